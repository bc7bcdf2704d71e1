"""Reward Ledger Adapter — the single choke point for moving credits.

Callers own the transaction: ``credit`` and ``debit`` flush but never commit,
so a balance change always lands together with the domain change it pays for.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.db.models import CreditAccount, CreditTransaction
from habitloop.db.upsert import insert_if_absent
from habitloop.errors import InsufficientCredits
from habitloop.users.service import require_user

logger = logging.getLogger(__name__)


async def _already_applied(db: AsyncSession, idempotency_key: str | None) -> bool:
    if idempotency_key is None:
        return False
    existing = await db.execute(
        select(CreditTransaction.id).where(CreditTransaction.idempotency_key == idempotency_key)
    )
    return existing.scalar_one_or_none() is not None


async def _ensure_account(db: AsyncSession, user_id: int, now: datetime) -> None:
    existing = await db.execute(select(CreditAccount.user_id).where(CreditAccount.user_id == user_id))
    if existing.scalar_one_or_none() is not None:
        return
    await require_user(db, user_id)
    await insert_if_absent(
        db,
        CreditAccount,
        {"user_id": user_id, "balance": 0, "lifetime_earned": 0, "lifetime_spent": 0, "updated_at": now},
        ["user_id"],
    )


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    *,
    reference: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Add credits to a user's balance. Returns False if the key was already applied."""
    if amount <= 0:
        msg = f"Credit amount must be positive, got {amount}"
        raise ValueError(msg)
    if await _already_applied(db, idempotency_key):
        return False

    now = now or datetime.now(timezone.utc)
    await _ensure_account(db, user_id, now)

    result = await db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id)
        .values(
            balance=CreditAccount.balance + amount,
            lifetime_earned=CreditAccount.lifetime_earned + amount,
            updated_at=now,
        )
        .returning(CreditAccount.balance)
    )
    balance_after = result.scalar_one()

    db.add(CreditTransaction(
        user_id=user_id,
        amount=amount,
        kind="credit",
        reason=reason,
        reference=reference,
        idempotency_key=idempotency_key,
        balance_after=balance_after,
        created_at=now,
    ))
    await db.flush()
    return True


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    *,
    reference: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Spend credits with a single conditional update.

    Raises InsufficientCredits when the balance is short. Returns False if the
    key was already applied.
    """
    if amount <= 0:
        msg = f"Debit amount must be positive, got {amount}"
        raise ValueError(msg)
    if await _already_applied(db, idempotency_key):
        return False

    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(CreditAccount)
        .where(
            CreditAccount.user_id == user_id,
            CreditAccount.balance >= amount,
        )
        .values(
            balance=CreditAccount.balance - amount,
            lifetime_spent=CreditAccount.lifetime_spent + amount,
            updated_at=now,
        )
        .returning(CreditAccount.balance)
    )
    balance_after = result.scalar_one_or_none()
    if balance_after is None:
        logger.info("Debit refused: user=%s amount=%d reason=%s", user_id, amount, reason)
        raise InsufficientCredits(amount)

    db.add(CreditTransaction(
        user_id=user_id,
        amount=-amount,
        kind="debit",
        reason=reason,
        reference=reference,
        idempotency_key=idempotency_key,
        balance_after=balance_after,
        created_at=now,
    ))
    await db.flush()
    return True


async def get_balance(db: AsyncSession, user_id: int) -> CreditAccount | None:
    """Fetch the credit account row, or None if the user never held credits."""
    result = await db.execute(
        select(CreditAccount).where(CreditAccount.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_history(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[CreditTransaction], int]:
    """Paginated transaction log, newest first."""
    total = await db.execute(
        select(func.count()).select_from(CreditTransaction).where(CreditTransaction.user_id == user_id)
    )
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars()), total.scalar_one()
