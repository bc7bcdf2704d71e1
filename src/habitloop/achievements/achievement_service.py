"""Achievement unlocks with write-once rows and exactly-once payout."""

from __future__ import annotations

import json
import logging
from fractions import Fraction
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.achievements.catalog import CATALOG, Achievement, AchievementFacts, eligible
from habitloop.clock import Clock
from habitloop.credits import ledger
from habitloop.db.models import AchievementUnlock, StreakData, UserPredictionStats
from habitloop.db.upsert import insert_if_absent
from habitloop.errors import AlreadyUnlocked
from habitloop.users.service import require_user

logger = logging.getLogger(__name__)


async def get_unlocks(db: AsyncSession, user_id: int) -> dict[str, AchievementUnlock]:
    result = await db.execute(
        select(AchievementUnlock).where(AchievementUnlock.user_id == user_id)
    )
    return {u.achievement_id: u for u in result.scalars()}


async def unlock_achievement(
    db: AsyncSession,
    user_id: int,
    achievement: Achievement,
    clock: Clock,
) -> None:
    """Insert the unlock and pay its reward in one transaction.

    Raises AlreadyUnlocked when a concurrent evaluation got there first.
    """
    inserted = await insert_if_absent(
        db,
        AchievementUnlock,
        {
            "user_id": user_id,
            "achievement_id": achievement.id,
            "unlocked_on": clock.today(),
            "created_at": clock.now(),
        },
        ["user_id", "achievement_id"],
    )
    if not inserted:
        await db.rollback()
        raise AlreadyUnlocked

    await ledger.credit(
        db, user_id, achievement.reward, "achievement",
        reference=f"achievement:{achievement.id}",
        idempotency_key=f"achievement:{achievement.id}:{user_id}",
        now=clock.now(),
    )
    await db.commit()


async def check_achievements(
    db: AsyncSession,
    user_id: int,
    facts: AchievementFacts,
    clock: Clock,
    redis: object = None,
) -> list[str]:
    """Unlock every achievement ``facts`` now satisfies.

    Returns the newly unlocked ids in catalog order. A failed unlock is
    logged and left for the next evaluation. Raises NotFound for an unknown user.
    """
    await require_user(db, user_id)
    unlocked = await get_unlocks(db, user_id)
    newly: list[str] = []

    for achievement in eligible(facts):
        if achievement.id in unlocked:
            continue
        try:
            await unlock_achievement(db, user_id, achievement, clock)
        except AlreadyUnlocked:
            continue
        except SQLAlchemyError:
            await db.rollback()
            logger.exception(
                "Unlock of %s for user %s failed; will retry on next check",
                achievement.id, user_id,
            )
            continue

        newly.append(achievement.id)
        logger.info(
            "Achievement unlocked: user=%s achievement=%s reward=%d",
            user_id, achievement.id, achievement.reward,
        )
        await _emit_unlocked(redis, user_id, achievement)

    return newly


def _exact_accuracy(stats: UserPredictionStats | None) -> Fraction | None:
    """Accuracy in percent as an exact fraction; None before the first vote."""
    if stats is None or not stats.total_votes:
        return None
    return Fraction(stats.correct_votes * 100, stats.total_votes)


async def build_facts(
    db: AsyncSession,
    user_id: int,
    external: dict[str, Any] | None = None,
) -> AchievementFacts:
    """Snapshot the user's streak and prediction facts plus caller-supplied signals.

    ``external`` may carry has_diagnosis, total_assets, has_shared and
    has_posted; anything missing stays unknown.
    """
    external = external or {}
    streak = (await db.execute(
        select(StreakData).where(StreakData.user_id == user_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    stats = (await db.execute(
        select(UserPredictionStats).where(UserPredictionStats.user_id == user_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()

    return AchievementFacts(
        visit_streak=streak.current_streak if streak else 0,
        prediction_accuracy=_exact_accuracy(stats),
        prediction_streak=stats.current_streak if stats else 0,
        correct_votes=stats.correct_votes if stats else 0,
        has_diagnosis=external.get("has_diagnosis"),
        total_assets=external.get("total_assets"),
        has_shared=external.get("has_shared"),
        has_posted=external.get("has_posted"),
    )


async def list_achievements(db: AsyncSession, user_id: int) -> dict[str, Any]:
    """Whole catalog with the user's unlock status."""
    unlocks = await get_unlocks(db, user_id)
    items = [
        {
            "id": a.id,
            "category": a.category,
            "title": a.title,
            "description": a.description,
            "reward": a.reward,
            "unlocked": a.id in unlocks,
            "unlocked_on": unlocks[a.id].unlocked_on if a.id in unlocks else None,
        }
        for a in CATALOG
    ]
    return {"achievements": items, "unlocked": len(unlocks), "total": len(CATALOG)}


async def _emit_unlocked(redis: object, user_id: int, achievement: Achievement) -> None:
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:achievement_unlocked",
            json.dumps({
                "user_id": user_id,
                "achievement_id": achievement.id,
                "reward": achievement.reward,
            }),
        )
    except Exception:
        logger.warning("Failed to publish achievement notification", exc_info=True)
