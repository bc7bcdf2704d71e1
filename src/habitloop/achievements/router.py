"""Achievement catalog and unlock-check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.achievements.achievement_service import (
    build_facts,
    check_achievements,
    list_achievements,
)
from habitloop.achievements.catalog import BY_ID
from habitloop.achievements.schemas import (
    AchievementListResponse,
    CheckAchievementsRequest,
    CheckAchievementsResponse,
)
from habitloop.clock import Clock
from habitloop.database import get_session
from habitloop.dependencies import get_clock_dep, get_current_user_id, get_redis_dep

router = APIRouter(prefix="/api/v1/achievements", tags=["Achievements"])


@router.get("", response_model=AchievementListResponse)
async def my_achievements(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Every achievement with the caller's unlock status."""
    return await list_achievements(db, user_id)


@router.post("/check", response_model=CheckAchievementsResponse)
async def check(
    body: CheckAchievementsRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
    redis: object = Depends(get_redis_dep),
):
    """Evaluate the catalog and unlock whatever the caller now qualifies for."""
    external = body.model_dump(exclude_none=True) if body else {}
    facts = await build_facts(db, user_id, external)
    newly = await check_achievements(db, user_id, facts, clock, redis)
    return CheckAchievementsResponse(
        newly_unlocked=newly,
        credits_awarded=sum(BY_ID[a].reward for a in newly),
    )
