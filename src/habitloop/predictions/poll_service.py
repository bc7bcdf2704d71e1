"""Poll lifecycle: creation, vote intake, and resolution with reward payout.

State machine: OPEN -> RESOLVED (terminal). Every mutating call is one
transaction and is safe to retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import Clock, as_utc
from habitloop.config import get_settings
from habitloop.credits import ledger
from habitloop.db.models import (
    CATEGORIES,
    CHOICES,
    POLL_OPEN,
    POLL_RESOLVED,
    Poll,
    User,
    UserPredictionStats,
    Vote,
)
from habitloop.db.upsert import insert_if_absent
from habitloop.errors import AlreadyVoted, NotFound, PollClosed
from habitloop.predictions.rewards import RewardPolicy, compute_reward
from habitloop.users.service import require_user

logger = logging.getLogger(__name__)


@dataclass
class ResolutionSummary:
    poll_id: int
    correct_answer: str
    voters_scored: int = 0
    correct_voters: int = 0
    credits_paid: int = 0
    already_resolved: bool = False


def normalize_choice(choice: str) -> str:
    """Upper-case a YES/NO choice; raise ValueError for anything else."""
    value = (choice or "").strip().upper()
    if value not in CHOICES:
        msg = f"Choice must be one of {CHOICES}, got {choice!r}"
        raise ValueError(msg)
    return value


async def get_or_create_stats(
    db: AsyncSession,
    user_id: int,
    *,
    for_update: bool = False,
) -> UserPredictionStats:
    """Get or create the denormalized prediction stats row for a user."""
    stmt = (
        select(UserPredictionStats)
        .where(UserPredictionStats.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    stats = (await db.execute(stmt)).scalar_one_or_none()
    if stats is None:
        await require_user(db, user_id)
        await insert_if_absent(db, UserPredictionStats, {"user_id": user_id}, ["user_id"])
        stats = (await db.execute(stmt)).scalar_one()
    return stats


async def create_poll(
    db: AsyncSession,
    *,
    question: str,
    category: str,
    deadline: datetime,
    yes_label: str = "YES",
    no_label: str = "NO",
    description: str | None = None,
    base_reward_credits: int | None = None,
    source: str | None = None,
    difficulty: str | None = None,
    context_hint: str | None = None,
    related_ticker: str | None = None,
) -> Poll:
    """Insert a new OPEN poll (called by the content ingestion pipeline)."""
    if category not in CATEGORIES:
        msg = f"Unknown poll category: {category}"
        raise ValueError(msg)
    if deadline.tzinfo is None:
        msg = "Poll deadline must be timezone-aware"
        raise ValueError(msg)

    poll = Poll(
        question=question,
        description=description,
        category=category,
        yes_label=yes_label,
        no_label=no_label,
        deadline=as_utc(deadline),
        status=POLL_OPEN,
        base_reward_credits=(
            base_reward_credits if base_reward_credits is not None
            else get_settings().prediction_base_reward
        ),
        source=source,
        difficulty=difficulty,
        context_hint=context_hint,
        related_ticker=related_ticker,
    )
    db.add(poll)
    await db.commit()
    logger.info("Poll created: id=%s category=%s deadline=%s", poll.id, category, poll.deadline)
    return poll


async def submit_vote(
    db: AsyncSession,
    user_id: int,
    poll_id: int,
    choice: str,
    clock: Clock,
) -> Vote:
    """Cast a user's single, immutable vote on an open poll.

    Raises NotFound (user or poll), PollClosed or AlreadyVoted. The (poll_id, user_id)
    uniqueness constraint decides concurrent double-submits: exactly one
    insert takes effect.
    """
    choice = normalize_choice(choice)
    now = clock.now()
    await require_user(db, user_id)

    poll = await db.get(Poll, poll_id, populate_existing=True)
    if poll is None:
        raise NotFound("Poll not found")
    if poll.status != POLL_OPEN or now >= as_utc(poll.deadline):
        raise PollClosed

    inserted = await insert_if_absent(
        db,
        Vote,
        {"poll_id": poll_id, "user_id": user_id, "choice": choice, "cast_at": now},
        ["poll_id", "user_id"],
    )
    if not inserted:
        await db.rollback()
        raise AlreadyVoted

    # Re-checks the poll under its row lock, so a resolution that committed
    # after the read above cannot miss this vote.
    counter = Poll.yes_count if choice == "YES" else Poll.no_count
    bumped = await db.execute(
        update(Poll)
        .where(Poll.id == poll_id, Poll.status == POLL_OPEN, Poll.deadline > now)
        .values({counter.key: counter + 1})
        .execution_options(synchronize_session=False)
    )
    if bumped.rowcount != 1:
        await db.rollback()
        raise PollClosed

    await get_or_create_stats(db, user_id)
    await db.execute(
        update(UserPredictionStats)
        .where(UserPredictionStats.user_id == user_id)
        .values(total_votes=UserPredictionStats.total_votes + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    vote = (await db.execute(
        select(Vote).where(Vote.poll_id == poll_id, Vote.user_id == user_id)
    )).scalar_one()
    logger.info("Vote cast: poll=%s user=%s choice=%s", poll_id, user_id, choice)
    return vote


async def _subscriber_ids(db: AsyncSession, user_ids: list[int]) -> set[int]:
    if not user_ids:
        return set()
    result = await db.execute(
        select(User.id).where(User.id.in_(user_ids), User.is_subscriber.is_(True))
    )
    return set(result.scalars())


async def resolve_poll(
    db: AsyncSession,
    poll_id: int,
    correct_answer: str,
    source: str | None,
    clock: Clock,
    policy: RewardPolicy | None = None,
) -> ResolutionSummary:
    """Resolve a poll and pay every correct voter exactly once.

    Idempotent: a duplicate call finds the poll RESOLVED and only sweeps votes
    whose ``credits_earned`` is still NULL, which is normally none. The whole
    poll commits or rolls back as one unit.
    """
    correct_answer = normalize_choice(correct_answer)
    policy = policy or RewardPolicy.from_settings()
    now = clock.now()

    transitioned = await db.execute(
        update(Poll)
        .where(Poll.id == poll_id, Poll.status == POLL_OPEN)
        .values(
            status=POLL_RESOLVED,
            correct_answer=correct_answer,
            resolved_at=now,
            source=func.coalesce(source, Poll.source),
        )
        .execution_options(synchronize_session=False)
    )
    poll = (await db.execute(
        select(Poll).where(Poll.id == poll_id).execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if poll is None:
        await db.rollback()
        raise NotFound("Poll not found")

    summary = ResolutionSummary(
        poll_id=poll_id,
        correct_answer=poll.correct_answer,
        already_resolved=transitioned.rowcount == 0,
    )
    if summary.already_resolved and poll.correct_answer != correct_answer:
        logger.warning(
            "Poll %s already resolved as %s; ignoring answer %s",
            poll_id, poll.correct_answer, correct_answer,
        )

    try:
        votes = (await db.execute(
            select(Vote)
            .where(Vote.poll_id == poll_id, Vote.credits_earned.is_(None))
            .order_by(Vote.cast_at, Vote.id)
        )).scalars().all()
        subscribers = await _subscriber_ids(db, [v.user_id for v in votes])

        for vote in votes:
            stats = await get_or_create_stats(db, vote.user_id, for_update=True)
            is_correct = vote.choice == poll.correct_answer
            if is_correct:
                stats.correct_votes += 1
                stats.current_streak += 1
            else:
                stats.current_streak = 0
            stats.best_streak = max(stats.best_streak, stats.current_streak)

            reward = compute_reward(
                poll.base_reward_credits,
                is_correct,
                vote.user_id in subscribers,
                stats.current_streak,
                policy,
            )
            vote.is_correct = is_correct
            vote.credits_earned = reward.base
            stats.total_credits_earned += reward.total
            stats.updated_at = now

            if reward.base:
                await ledger.credit(
                    db, vote.user_id, reward.base, "prediction_correct",
                    reference=f"poll:{poll_id}",
                    idempotency_key=f"prediction:{poll_id}:{vote.user_id}",
                    now=now,
                )
            if reward.streak_bonus:
                await ledger.credit(
                    db, vote.user_id, reward.streak_bonus, "prediction_streak_bonus",
                    reference=f"poll:{poll_id}",
                    idempotency_key=f"prediction-streak:{poll_id}:{vote.user_id}:{stats.current_streak}",
                    now=now,
                )

            summary.voters_scored += 1
            summary.correct_voters += int(is_correct)
            summary.credits_paid += reward.total

        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Resolution of poll %s failed; rolled back", poll_id)
        raise

    logger.info(
        "Poll %s resolved as %s: %d scored, %d correct, %d credits",
        poll_id, summary.correct_answer, summary.voters_scored,
        summary.correct_voters, summary.credits_paid,
    )
    return summary
