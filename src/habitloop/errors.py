"""Domain errors surfaced to clients as user-facing messages."""

from __future__ import annotations


class HabitLoopError(Exception):
    """Base class for expected, recoverable engine errors."""

    code = "error"
    status_code = 400

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class NotFound(HabitLoopError):
    """Requested resource does not exist."""

    code = "not_found"
    status_code = 404


class AlreadyVoted(HabitLoopError):
    """You have already voted on this poll."""

    code = "already_voted"
    status_code = 409


class PollClosed(HabitLoopError):
    """This poll is no longer accepting votes."""

    code = "poll_closed"
    status_code = 409


class InsufficientCredits(HabitLoopError):
    """Not enough credits for this purchase."""

    code = "insufficient_credits"
    status_code = 402

    def __init__(self, required: int, detail: str | None = None) -> None:
        self.required = required
        super().__init__(detail or f"Not enough credits: {required} required")


class RecoveryUnavailable(HabitLoopError):
    """This streak can no longer be recovered."""

    code = "recovery_unavailable"
    status_code = 422


class AlreadyUnlocked(HabitLoopError):
    """Achievement was unlocked by a concurrent evaluation."""

    code = "already_unlocked"
    status_code = 409
