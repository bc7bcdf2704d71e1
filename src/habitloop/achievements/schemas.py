"""Pydantic request/response models for achievement endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class AchievementResponse(BaseModel):
    id: str
    category: str
    title: str
    description: str
    reward: int
    unlocked: bool
    unlocked_on: date | None = None


class AchievementListResponse(BaseModel):
    achievements: list[AchievementResponse]
    unlocked: int
    total: int


class CheckAchievementsRequest(BaseModel):
    """Signals owned by other services; omitted fields are treated as unknown."""

    has_diagnosis: bool | None = None
    total_assets: float | None = Field(default=None, ge=0)
    has_shared: bool | None = None
    has_posted: bool | None = None


class CheckAchievementsResponse(BaseModel):
    newly_unlocked: list[str]
    credits_awarded: int
