"""Credit balance and history endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.credits.ledger import get_balance, get_history
from habitloop.credits.schemas import BalanceResponse, CreditHistoryResponse, CreditTransactionEntry
from habitloop.database import get_session
from habitloop.dependencies import get_current_user_id

router = APIRouter(prefix="/api/v1/credits", tags=["Credits"])


@router.get("/balance", response_model=BalanceResponse)
async def my_balance(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Current spendable balance."""
    account = await get_balance(db, user_id)
    if account is None:
        return BalanceResponse(balance=0, lifetime_earned=0, lifetime_spent=0)
    return BalanceResponse(
        balance=account.balance,
        lifetime_earned=account.lifetime_earned,
        lifetime_spent=account.lifetime_spent,
    )


@router.get("/history", response_model=CreditHistoryResponse)
async def my_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Credit movements, newest first."""
    rows, total = await get_history(db, user_id, page, per_page)
    return CreditHistoryResponse(
        entries=[
            CreditTransactionEntry(
                amount=tx.amount,
                kind=tx.kind,
                reason=tx.reason,
                reference=tx.reference,
                balance_after=tx.balance_after,
                created_at=tx.created_at,
            )
            for tx in rows
        ],
        total=total,
        page=page,
        per_page=per_page,
    )
