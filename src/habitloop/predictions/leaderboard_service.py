"""Prediction leaderboard — accuracy ranking over prediction stats.

Ranking is deterministic: accuracy DESC, total votes DESC, account age ASC,
user id ASC. Accuracy is compared as an exact fraction so 4/5 and 8/10 tie.
The full ranking of a window is cached in Redis as JSON when Redis is available.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, time, timezone
from fractions import Fraction
from typing import Any

from sqlalchemy import Integer, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import Clock
from habitloop.config import get_settings
from habitloop.db.models import User, UserPredictionStats, Vote

logger = logging.getLogger(__name__)

WINDOW_ALLTIME = "alltime"
WINDOW_WEEKLY = "weekly"
WINDOWS = (WINDOW_ALLTIME, WINDOW_WEEKLY)


def mask_email(email: str) -> str:
    """ab***@gmail.com style nickname: two leading characters, one for short locals."""
    at = email.find("@")
    if at <= 2:
        return email[:1] + "***"
    return email[:2] + "***"


def public_name(user_id: int, email: str | None, display_name: str | None) -> str:
    if email:
        return mask_email(email)
    return display_name or f"user-{user_id}"


def calculate_percentile(rank: int, total: int) -> float:
    """Rank 1 of 100 -> 99.0, rank 100 of 100 -> 0.0."""
    if total <= 0 or rank <= 0:
        return 0.0
    return round(100 - (rank / total * 100), 2)


def accuracy_of(correct: int, total: int) -> float:
    if not total:
        return 0.0
    return round(correct / total * 100, 2)


def rank_entries(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort qualifying rows and assign 1-based ``rank`` and ``percentile``.

    Each row needs user_id, total_votes, correct_votes and joined_at
    (an ISO string or datetime; only its order matters).
    """
    def sort_key(r: dict[str, Any]) -> tuple:
        return (
            -Fraction(r["correct_votes"], r["total_votes"]),
            -r["total_votes"],
            r["joined_at"],
            r["user_id"],
        )

    ranked = sorted(rows, key=sort_key)
    total = len(ranked)
    for idx, r in enumerate(ranked):
        r["rank"] = idx + 1
        r["percentile"] = calculate_percentile(idx + 1, total)
    return ranked


def picks_to_top(
    correct: int, total: int, target_correct: int, target_total: int,
) -> int | None:
    """Fewest extra correct picks k with (correct+k)/(total+k) >= target accuracy.

    None when the target is a perfect record the caller can no longer reach.
    """
    target = Fraction(target_correct, target_total)
    if total and Fraction(correct, total) >= target:
        return 0
    if target == 1:
        return None
    k = math.ceil((target * total - correct) / (1 - target))
    return max(k, 0)


def cache_key(window: str, clock: Clock) -> str:
    if window == WINDOW_WEEKLY:
        return f"leaderboard:weekly:{clock.week_start().isoformat()}"
    return "leaderboard:alltime"


def _week_start_utc(clock: Clock) -> datetime:
    start = datetime.combine(clock.week_start(), time.min, tzinfo=clock.tz)
    return start.astimezone(timezone.utc)


async def _window_rows(
    db: AsyncSession, window: str, clock: Clock, *, min_votes: int,
) -> tuple[list[dict[str, Any]], int]:
    """Per-user rows for a window with at least ``min_votes`` votes, plus participant count."""
    if window == WINDOW_ALLTIME:
        participants = (await db.execute(
            select(func.count()).select_from(UserPredictionStats)
            .where(UserPredictionStats.total_votes >= 1)
        )).scalar() or 0
        result = await db.execute(
            select(UserPredictionStats, User.email, User.display_name, User.created_at)
            .join(User, User.id == UserPredictionStats.user_id)
            .where(UserPredictionStats.total_votes >= min_votes)
            .execution_options(populate_existing=True)
        )
        rows = [
            {
                "user_id": s.user_id,
                "display_name": public_name(s.user_id, email, display_name),
                "total_votes": s.total_votes,
                "correct_votes": s.correct_votes,
                "current_streak": s.current_streak,
                "best_streak": s.best_streak,
                "total_credits_earned": s.total_credits_earned,
                "joined_at": created_at.isoformat() if created_at else "",
            }
            for s, email, display_name, created_at in result
        ]
        return rows, participants

    if window != WINDOW_WEEKLY:
        msg = f"Unknown leaderboard window: {window}"
        raise ValueError(msg)

    since = _week_start_utc(clock)
    total_col = func.count(Vote.id).label("total_votes")
    correct_col = func.sum(case((Vote.is_correct.is_(True), 1), else_=0)).label("correct_votes")
    credits_col = func.sum(func.coalesce(Vote.credits_earned, 0)).label("credits")
    weekly = (
        select(Vote.user_id, total_col, correct_col, credits_col)
        .where(Vote.cast_at >= since)
        .group_by(Vote.user_id)
        .subquery()
    )
    participants = (await db.execute(select(func.count()).select_from(weekly))).scalar() or 0
    result = await db.execute(
        select(
            weekly.c.user_id,
            weekly.c.total_votes,
            weekly.c.correct_votes.cast(Integer),
            weekly.c.credits.cast(Integer),
            User.email,
            User.display_name,
            User.created_at,
            UserPredictionStats.current_streak,
            UserPredictionStats.best_streak,
        )
        .join(User, User.id == weekly.c.user_id)
        .outerjoin(UserPredictionStats, UserPredictionStats.user_id == weekly.c.user_id)
        .where(weekly.c.total_votes >= min_votes)
    )
    rows = [
        {
            "user_id": uid,
            "display_name": public_name(uid, email, display_name),
            "total_votes": total,
            "correct_votes": correct or 0,
            "current_streak": cur or 0,
            "best_streak": best or 0,
            "total_credits_earned": credits or 0,
            "joined_at": created_at.isoformat() if created_at else "",
        }
        for uid, total, correct, credits, email, display_name, created_at, cur, best in result
    ]
    return rows, participants


async def build_ranking(
    db: AsyncSession, window: str, clock: Clock,
) -> dict[str, Any]:
    """Compute the full ranking for a window straight from the database."""
    settings = get_settings()
    rows, participants = await _window_rows(
        db, window, clock, min_votes=settings.leaderboard_min_votes,
    )
    ranked = rank_entries(rows)
    for r in ranked:
        r["accuracy_rate"] = accuracy_of(r["correct_votes"], r["total_votes"])
    return {"window": window, "entries": ranked, "total_participants": participants}


async def get_ranking(
    db: AsyncSession, window: str, clock: Clock, redis: object = None,
) -> dict[str, Any]:
    """Full ranking for a window, read through the Redis cache when available."""
    key = cache_key(window, clock)
    if redis is not None:
        try:
            cached = await redis.get(key)  # type: ignore[union-attr]
            if cached:
                return json.loads(cached)
        except Exception:
            logger.warning("Leaderboard cache read failed for %s", key, exc_info=True)

    ranking = await build_ranking(db, window, clock)
    if redis is not None:
        await _store(redis, key, ranking)
    return ranking


async def _store(redis: object, key: str, ranking: dict[str, Any]) -> None:
    ttl = get_settings().leaderboard_cache_ttl_seconds
    try:
        await redis.setex(key, ttl, json.dumps(ranking))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Leaderboard cache write failed for %s", key, exc_info=True)


async def refresh_leaderboard_cache(
    db: AsyncSession, redis: object, clock: Clock,
) -> dict[str, int]:
    """Rebuild every window's cached ranking. Returns entry counts per window."""
    counts: dict[str, int] = {}
    for window in WINDOWS:
        ranking = await build_ranking(db, window, clock)
        await _store(redis, cache_key(window, clock), ranking)
        counts[window] = len(ranking["entries"])
    logger.info("Leaderboard cache refreshed: %s", counts)
    return counts


async def _my_window_votes(
    db: AsyncSession, user_id: int, window: str, clock: Clock,
) -> tuple[int, int]:
    """(correct, total) for one user in a window."""
    if window == WINDOW_ALLTIME:
        row = (await db.execute(
            select(UserPredictionStats.correct_votes, UserPredictionStats.total_votes)
            .where(UserPredictionStats.user_id == user_id)
        )).first()
        return (row[0], row[1]) if row else (0, 0)
    row = (await db.execute(
        select(
            func.coalesce(func.sum(case((Vote.is_correct.is_(True), 1), else_=0)), 0),
            func.count(Vote.id),
        )
        .where(Vote.user_id == user_id, Vote.cast_at >= _week_start_utc(clock))
    )).first()
    return (int(row[0] or 0), int(row[1] or 0)) if row else (0, 0)


def _public_entry(entry: dict[str, Any], user_id: int | None) -> dict[str, Any]:
    out = {k: v for k, v in entry.items() if k != "joined_at"}
    out["is_me"] = entry["user_id"] == user_id
    return out


async def get_leaderboard(
    db: AsyncSession,
    user_id: int | None,
    window: str,
    clock: Clock,
    redis: object = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Top-N leaderboard plus the caller's own position when outside it."""
    if window not in WINDOWS:
        msg = f"Unknown leaderboard window: {window}"
        raise ValueError(msg)
    settings = get_settings()
    limit = limit or settings.leaderboard_top_n

    ranking = await get_ranking(db, window, clock, redis)
    entries = ranking["entries"]
    top = entries[:limit]

    me: dict[str, Any] | None = None
    if user_id is not None and not any(e["user_id"] == user_id for e in top):
        mine = next((e for e in entries if e["user_id"] == user_id), None)
        if mine is not None:
            me = _public_entry(mine, user_id)
            nth = top[-1]
            me["picks_to_top"] = picks_to_top(
                mine["correct_votes"], mine["total_votes"],
                nth["correct_votes"], nth["total_votes"],
            )
            me["votes_to_qualify"] = 0
        else:
            correct, total = await _my_window_votes(db, user_id, window, clock)
            me = {
                "user_id": user_id,
                "rank": None,
                "percentile": None,
                "total_votes": total,
                "correct_votes": correct,
                "accuracy_rate": accuracy_of(correct, total),
                "picks_to_top": None,
                "votes_to_qualify": max(settings.leaderboard_min_votes - total, 0),
                "is_me": True,
            }

    return {
        "window": window,
        "entries": [_public_entry(e, user_id) for e in top],
        "total_participants": ranking["total_participants"],
        "me": me,
    }
