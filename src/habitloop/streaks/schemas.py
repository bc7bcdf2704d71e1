"""Pydantic response models for streak endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class StreakMessageResponse(BaseModel):
    emoji: str
    message: str
    is_milestone: bool


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_visit_date: date | None = None
    freeze_count: int = 0
    message: StreakMessageResponse | None = None


class CheckInResponse(BaseModel):
    updated: bool
    is_new_streak: bool
    freeze_used: bool
    streak: StreakResponse


class FreezeResponse(BaseModel):
    freeze_count: int
    last_used_date: date | None = None


class RecoveryQuoteResponse(BaseModel):
    days_missed: int
    can_recover: bool
    cost: int | None = None
    previous_streak: int
