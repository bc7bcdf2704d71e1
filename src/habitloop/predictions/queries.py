"""Read-only prediction queries: active/resolved polls, yesterday review, stats."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import Clock
from habitloop.db.models import POLL_OPEN, POLL_RESOLVED, Poll, UserPredictionStats, Vote


def poll_as_dict(poll: Poll, vote: Vote | None = None) -> dict[str, Any]:
    return {
        "id": poll.id,
        "question": poll.question,
        "description": poll.description,
        "category": poll.category,
        "yes_label": poll.yes_label,
        "no_label": poll.no_label,
        "deadline": poll.deadline,
        "status": poll.status,
        "correct_answer": poll.correct_answer,
        "resolved_at": poll.resolved_at,
        "base_reward_credits": poll.base_reward_credits,
        "yes_count": poll.yes_count,
        "no_count": poll.no_count,
        "difficulty": poll.difficulty,
        "context_hint": poll.context_hint,
        "related_ticker": poll.related_ticker,
        "my_vote": vote.choice if vote else None,
        "my_is_correct": vote.is_correct if vote else None,
        "my_credits_earned": vote.credits_earned if vote else None,
    }


async def _merge_votes(
    db: AsyncSession, user_id: int, polls: list[Poll],
) -> list[dict[str, Any]]:
    """Attach the caller's vote (if any) to each poll."""
    if not polls:
        return []
    result = await db.execute(
        select(Vote).where(
            Vote.user_id == user_id,
            Vote.poll_id.in_([p.id for p in polls]),
        )
        .execution_options(populate_existing=True)
    )
    votes = {v.poll_id: v for v in result.scalars()}
    return [poll_as_dict(p, votes.get(p.id)) for p in polls]


async def get_active_polls(
    db: AsyncSession,
    user_id: int,
    clock: Clock,
    category: str | None = None,
) -> list[dict[str, Any]]:
    """OPEN polls still accepting votes, soonest deadline first."""
    stmt = (
        select(Poll)
        .where(Poll.status == POLL_OPEN, Poll.deadline > clock.now())
        .order_by(Poll.deadline.asc(), Poll.id.asc())
        .execution_options(populate_existing=True)
    )
    if category:
        stmt = stmt.where(Poll.category == category)
    polls = list((await db.execute(stmt)).scalars())
    return await _merge_votes(db, user_id, polls)


async def get_resolved_polls(
    db: AsyncSession,
    user_id: int,
    start: datetime,
    end: datetime,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """RESOLVED polls with resolved_at in [start, end), newest first."""
    polls = list((await db.execute(
        select(Poll)
        .where(
            Poll.status == POLL_RESOLVED,
            Poll.resolved_at >= start,
            Poll.resolved_at < end,
        )
        .order_by(Poll.resolved_at.desc(), Poll.id.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )).scalars())
    return await _merge_votes(db, user_id, polls)


async def get_yesterday_review(
    db: AsyncSession, user_id: int, clock: Clock,
) -> dict[str, Any]:
    """Polls whose deadline fell on yesterday's local calendar day.

    Accuracy counts only the caller's votes that have been scored.
    """
    start, end = clock.day_bounds(clock.yesterday())
    polls = list((await db.execute(
        select(Poll)
        .where(Poll.deadline >= start, Poll.deadline < end)
        .order_by(Poll.deadline.asc(), Poll.id.asc())
        .execution_options(populate_existing=True)
    )).scalars())
    rows = await _merge_votes(db, user_id, polls)

    voted = [r for r in rows if r["my_vote"] is not None]
    scored = [r for r in voted if r["my_is_correct"] is not None]
    correct = sum(1 for r in scored if r["my_is_correct"])
    accuracy = round(correct / len(scored) * 100, 2) if scored else 0.0
    return {
        "date": clock.yesterday(),
        "polls": rows,
        "summary": {
            "total": len(rows),
            "voted": len(voted),
            "correct": correct,
            "accuracy": accuracy,
        },
    }


async def get_my_stats(db: AsyncSession, user_id: int) -> dict[str, Any]:
    """The caller's prediction stats; zeros when they have never voted."""
    stats = (await db.execute(
        select(UserPredictionStats).where(UserPredictionStats.user_id == user_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if stats is None:
        return {
            "total_votes": 0,
            "correct_votes": 0,
            "accuracy_rate": 0.0,
            "current_streak": 0,
            "best_streak": 0,
            "total_credits_earned": 0,
        }
    return {
        "total_votes": stats.total_votes,
        "correct_votes": stats.correct_votes,
        "accuracy_rate": stats.accuracy_rate,
        "current_streak": stats.current_streak,
        "best_streak": stats.best_streak,
        "total_credits_earned": stats.total_credits_earned,
    }
