"""Prediction reward formula.

Pure functions, no I/O: the resolution job feeds in the voter's streak after
the win and subscriber status and gets back the ledger amounts.
"""

from __future__ import annotations

from dataclasses import dataclass

from habitloop.config import Settings, get_settings


@dataclass(frozen=True)
class RewardPolicy:
    """Reward constants, normally taken from settings."""

    subscriber_multiplier: int = 2
    streak5_bonus: int = 3
    streak10_bonus: int = 10

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RewardPolicy:
        settings = settings or get_settings()
        return cls(
            subscriber_multiplier=settings.subscriber_multiplier,
            streak5_bonus=settings.streak5_bonus,
            streak10_bonus=settings.streak10_bonus,
        )


@dataclass(frozen=True)
class Reward:
    base: int
    streak_bonus: int

    @property
    def total(self) -> int:
        return self.base + self.streak_bonus


NO_REWARD = Reward(base=0, streak_bonus=0)


def streak_bonus(streak_after_win: int, policy: RewardPolicy) -> int:
    """Bonus paid only on the win that lands the streak exactly on 5 or 10."""
    if streak_after_win == 5:
        return policy.streak5_bonus
    if streak_after_win == 10:
        return policy.streak10_bonus
    return 0


def compute_reward(
    base_reward_credits: int,
    is_correct: bool,
    is_subscriber: bool,
    streak_after_win: int,
    policy: RewardPolicy,
) -> Reward:
    """reward = base × (subscriber ? multiplier : 1) + streak bonus; 0 when wrong."""
    if not is_correct:
        return NO_REWARD
    multiplier = policy.subscriber_multiplier if is_subscriber else 1
    return Reward(
        base=base_reward_credits * multiplier,
        streak_bonus=streak_bonus(streak_after_win, policy),
    )
