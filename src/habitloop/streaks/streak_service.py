"""Daily visit streak: check-in, freeze insurance and paid recovery.

A user checks in at most once per application-local calendar day. Missing
exactly one day is covered by a freeze when one is in stock; a longer gap
resets the streak to 1, and a gap of up to three missed days can be bought
back afterwards.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import Clock
from habitloop.config import get_settings
from habitloop.credits import ledger
from habitloop.db.models import StreakData, StreakFreeze
from habitloop.db.upsert import insert_if_absent
from habitloop.errors import RecoveryUnavailable
from habitloop.users.service import require_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreakMessage:
    emoji: str
    message: str
    is_milestone: bool


@dataclass
class CheckInResult:
    updated: bool
    is_new_streak: bool
    freeze_used: bool
    streak: StreakData
    message: StreakMessage


@dataclass(frozen=True)
class RecoveryQuote:
    days_missed: int
    can_recover: bool
    cost: int | None
    previous_streak: int


def streak_message(streak: int) -> StreakMessage:
    """Encouragement line for a visit streak, flagging milestone days."""
    if streak >= 100:
        return StreakMessage("🏆", f"{streak} days in a row! You're a true investor", streak % 10 == 0)
    if streak >= 30:
        return StreakMessage("💎", f"{streak} days in a row! Your investing muscle is growing", streak in (30, 50, 75))
    if streak >= 7:
        return StreakMessage("🔥", f"{streak} days in a row! The habit is taking hold", streak % 7 == 0)
    if streak >= 3:
        return StreakMessage("✨", f"{streak} days in a row! Keep it up", False)
    return StreakMessage("🌱", f"{streak} days in a row! Great start", False)


async def get_or_create_streak(db: AsyncSession, user_id: int) -> StreakData:
    stmt = select(StreakData).where(StreakData.user_id == user_id).execution_options(populate_existing=True)
    streak = (await db.execute(stmt)).scalar_one_or_none()
    if streak is None:
        await require_user(db, user_id)
        await insert_if_absent(db, StreakData, {"user_id": user_id}, ["user_id"])
        streak = (await db.execute(stmt)).scalar_one()
    return streak


async def get_or_create_freeze(db: AsyncSession, user_id: int) -> StreakFreeze:
    stmt = select(StreakFreeze).where(StreakFreeze.user_id == user_id).execution_options(populate_existing=True)
    freeze = (await db.execute(stmt)).scalar_one_or_none()
    if freeze is None:
        await require_user(db, user_id)
        await insert_if_absent(db, StreakFreeze, {"user_id": user_id}, ["user_id"])
        freeze = (await db.execute(stmt)).scalar_one()
    return freeze


async def _consume_freeze(db: AsyncSession, user_id: int, today: date) -> bool:
    """Take one freeze out of stock; False when there is none left."""
    result = await db.execute(
        update(StreakFreeze)
        .where(StreakFreeze.user_id == user_id, StreakFreeze.freeze_count > 0)
        .values(freeze_count=StreakFreeze.freeze_count - 1, last_used_date=today)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _visit_matches(previous: date | None):
    if previous is None:
        return StreakData.last_visit_date.is_(None)
    return StreakData.last_visit_date == previous


async def check_in(
    db: AsyncSession,
    user_id: int,
    clock: Clock,
    redis: object = None,
) -> CheckInResult:
    """Record today's visit. A second call on the same day is a no-op."""
    today = clock.today()
    streak = await get_or_create_streak(db, user_id)
    previous = streak.last_visit_date

    if previous is not None and previous >= today:
        await db.commit()
        return CheckInResult(False, False, False, streak, streak_message(streak.current_streak))

    freeze_used = False
    is_new_streak = False
    broken_streak: int | None = None
    broken_last_visit: date | None = None

    if previous is None:
        new_streak = 1
        is_new_streak = True
    else:
        gap = (today - previous).days
        if gap == 1:
            new_streak = streak.current_streak + 1
        elif gap == 2 and await _consume_freeze(db, user_id, today):
            new_streak = streak.current_streak + 1
            freeze_used = True
        else:
            new_streak = 1
            is_new_streak = True
            broken_streak = streak.current_streak
            broken_last_visit = previous

    # Compare-and-set: a concurrent check-in that already advanced the row wins.
    result = await db.execute(
        update(StreakData)
        .where(StreakData.user_id == user_id, _visit_matches(previous))
        .values(
            current_streak=new_streak,
            longest_streak=max(streak.longest_streak, new_streak),
            last_visit_date=today,
            broken_streak=broken_streak,
            broken_last_visit=broken_last_visit,
            updated_at=clock.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        streak = await get_or_create_streak(db, user_id)
        return CheckInResult(False, False, False, streak, streak_message(streak.current_streak))

    await db.commit()
    await db.refresh(streak)

    if freeze_used:
        logger.info("Freeze consumed: user=%s streak=%d", user_id, new_streak)
    elif broken_streak:
        logger.info("Streak reset: user=%s lost %d-day streak", user_id, broken_streak)

    message = streak_message(new_streak)
    if message.is_milestone:
        await _emit_streak_event(redis, user_id, "streak_milestone", new_streak)
    return CheckInResult(True, is_new_streak, freeze_used, streak, message)


async def purchase_freeze(db: AsyncSession, user_id: int, clock: Clock) -> StreakFreeze:
    """Buy one freeze. Raises InsufficientCredits with nothing changed."""
    cost = get_settings().freeze_cost
    freeze = await get_or_create_freeze(db, user_id)
    try:
        await ledger.debit(
            db, user_id, cost, "streak_freeze_purchase",
            reference="streak_freeze", now=clock.now(),
        )
        await db.execute(
            update(StreakFreeze)
            .where(StreakFreeze.user_id == user_id)
            .values(freeze_count=StreakFreeze.freeze_count + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(freeze)
    logger.info("Freeze purchased: user=%s count=%d", user_id, freeze.freeze_count)
    return freeze


def _recovery_reference(streak: StreakData, today: date) -> tuple[date | None, int]:
    """(last visit before the break, streak value before the break)."""
    if streak.last_visit_date == today:
        if streak.broken_last_visit is None:
            return None, 0
        return streak.broken_last_visit, streak.broken_streak or 0
    return streak.last_visit_date, streak.current_streak


def quote_recovery(streak: StreakData, today: date) -> RecoveryQuote:
    """Pure pricing of a recovery for a streak row as of ``today``."""
    reference, previous_streak = _recovery_reference(streak, today)
    if reference is None:
        return RecoveryQuote(0, False, None, 0)
    days_missed = (today - reference).days - 1
    cost = get_settings().recovery_costs.get(days_missed) if days_missed >= 1 else None
    return RecoveryQuote(days_missed, cost is not None, cost, previous_streak)


async def get_recovery_quote(db: AsyncSession, user_id: int, clock: Clock) -> RecoveryQuote:
    streak = await get_or_create_streak(db, user_id)
    return quote_recovery(streak, clock.today())


async def recover_streak(
    db: AsyncSession,
    user_id: int,
    clock: Clock,
) -> StreakData:
    """Pay to restore a streak broken by 1-3 missed days.

    Raises RecoveryUnavailable when nothing is broken or the gap is too long,
    InsufficientCredits when the balance is short.
    """
    today = clock.today()
    streak = await get_or_create_streak(db, user_id)
    quote = quote_recovery(streak, today)
    if not quote.can_recover:
        if quote.days_missed >= 1:
            raise RecoveryUnavailable(
                f"Streak broken for {quote.days_missed} days; recovery covers at most 3"
            )
        raise RecoveryUnavailable("There is no broken streak to recover")

    previous = streak.last_visit_date
    restored = quote.previous_streak
    try:
        await ledger.debit(
            db, user_id, quote.cost, "streak_recovery",
            reference=f"streak_recovery:{today.isoformat()}", now=clock.now(),
        )
        result = await db.execute(
            update(StreakData)
            .where(StreakData.user_id == user_id, _visit_matches(previous))
            .values(
                current_streak=restored,
                longest_streak=max(streak.longest_streak, restored),
                last_visit_date=today,
                broken_streak=None,
                broken_last_visit=None,
                updated_at=clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RecoveryUnavailable("Streak changed during recovery; try again")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(streak)
    logger.info(
        "Streak recovered: user=%s days_missed=%d cost=%d streak=%d",
        user_id, quote.days_missed, quote.cost, restored,
    )
    return streak


async def _emit_streak_event(redis: object, user_id: int, event: str, streak_length: int) -> None:
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:streak_update",
            json.dumps({"user_id": user_id, "event": event, "streak_length": streak_length}),
        )
    except Exception:
        logger.warning("Failed to publish %s notification", event, exc_info=True)
