"""Pydantic response models for credit endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BalanceResponse(BaseModel):
    balance: int
    lifetime_earned: int
    lifetime_spent: int


class CreditTransactionEntry(BaseModel):
    amount: int
    kind: str
    reason: str
    reference: str | None = None
    balance_after: int
    created_at: datetime


class CreditHistoryResponse(BaseModel):
    entries: list[CreditTransactionEntry]
    total: int
    page: int
    per_page: int
