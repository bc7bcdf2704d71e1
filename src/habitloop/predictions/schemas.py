"""Pydantic request/response models for prediction endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


# --- Polls ---


class PollResponse(BaseModel):
    id: int
    question: str
    description: str | None = None
    category: str
    yes_label: str
    no_label: str
    deadline: datetime
    status: str
    correct_answer: str | None = None
    resolved_at: datetime | None = None
    base_reward_credits: int
    yes_count: int = 0
    no_count: int = 0
    difficulty: str | None = None
    context_hint: str | None = None
    related_ticker: str | None = None
    my_vote: str | None = None
    my_is_correct: bool | None = None
    my_credits_earned: int | None = None


class PollListResponse(BaseModel):
    polls: list[PollResponse]


class ReviewSummary(BaseModel):
    total: int
    voted: int
    correct: int
    accuracy: float


class YesterdayReviewResponse(BaseModel):
    date: date
    polls: list[PollResponse]
    summary: ReviewSummary


# --- Votes ---


class VoteRequest(BaseModel):
    choice: Literal["YES", "NO"]


class VoteResponse(BaseModel):
    poll_id: int
    choice: str
    cast_at: datetime


# --- Stats ---


class PredictionStatsResponse(BaseModel):
    total_votes: int
    correct_votes: int
    accuracy_rate: float
    current_streak: int
    best_streak: int
    total_credits_earned: int


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    rank: int | None
    user_id: int
    display_name: str | None = None
    total_votes: int
    correct_votes: int
    accuracy_rate: float
    percentile: float | None = None
    current_streak: int = 0
    best_streak: int = 0
    total_credits_earned: int = 0
    is_me: bool = False


class MyLeaderboardEntry(LeaderboardEntry):
    picks_to_top: int | None = None
    votes_to_qualify: int = 0


class LeaderboardResponse(BaseModel):
    window: str
    entries: list[LeaderboardEntry]
    total_participants: int
    me: MyLeaderboardEntry | None = None


# --- Internal ---


class CreatePollRequest(BaseModel):
    question: str = Field(min_length=1)
    category: Literal["stocks", "crypto", "macro", "event"]
    deadline: datetime
    yes_label: str = "YES"
    no_label: str = "NO"
    description: str | None = None
    base_reward_credits: int | None = Field(default=None, ge=0)
    difficulty: Literal["easy", "medium", "hard"] | None = None
    context_hint: str | None = None
    related_ticker: str | None = None


class ResolvePollRequest(BaseModel):
    correct_answer: Literal["YES", "NO"]
    source: str | None = None


class ResolutionResponse(BaseModel):
    poll_id: int
    correct_answer: str
    voters_scored: int
    correct_voters: int
    credits_paid: int
    already_resolved: bool
