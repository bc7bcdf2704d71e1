"""Visit streak endpoints: status, check-in, freezes and recovery."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import Clock
from habitloop.database import get_session
from habitloop.db.models import StreakData
from habitloop.dependencies import get_clock_dep, get_current_user_id, get_redis_dep
from habitloop.streaks.schemas import (
    CheckInResponse,
    FreezeResponse,
    RecoveryQuoteResponse,
    StreakMessageResponse,
    StreakResponse,
)
from habitloop.streaks.streak_service import (
    check_in,
    get_or_create_freeze,
    get_or_create_streak,
    get_recovery_quote,
    purchase_freeze,
    recover_streak,
    streak_message,
)

router = APIRouter(prefix="/api/v1/streak", tags=["Streak"])


async def _streak_response(db: AsyncSession, streak: StreakData) -> StreakResponse:
    freeze = await get_or_create_freeze(db, streak.user_id)
    await db.commit()
    return StreakResponse(
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        last_visit_date=streak.last_visit_date,
        freeze_count=freeze.freeze_count,
        message=StreakMessageResponse(**asdict(streak_message(streak.current_streak)))
        if streak.current_streak else None,
    )


@router.get("", response_model=StreakResponse)
async def get_streak(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Current visit streak and freeze inventory."""
    streak = await get_or_create_streak(db, user_id)
    return await _streak_response(db, streak)


@router.post("/check-in", response_model=CheckInResponse)
async def daily_check_in(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
    redis: object = Depends(get_redis_dep),
):
    """Record today's visit; repeated calls the same day change nothing."""
    result = await check_in(db, user_id, clock, redis)
    return CheckInResponse(
        updated=result.updated,
        is_new_streak=result.is_new_streak,
        freeze_used=result.freeze_used,
        streak=await _streak_response(db, result.streak),
    )


@router.post("/freezes", response_model=FreezeResponse, status_code=201)
async def buy_freeze(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    freeze = await purchase_freeze(db, user_id, clock)
    return FreezeResponse(freeze_count=freeze.freeze_count, last_used_date=freeze.last_used_date)


@router.get("/recovery", response_model=RecoveryQuoteResponse)
async def recovery_quote(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    """Price of restoring a broken streak, if one can be restored."""
    quote = await get_recovery_quote(db, user_id, clock)
    await db.commit()
    return RecoveryQuoteResponse(**asdict(quote))


@router.post("/recovery", response_model=StreakResponse)
async def recover(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    streak = await recover_streak(db, user_id, clock)
    return await _streak_response(db, streak)
