"""Prediction poll, vote, stats and leaderboard endpoints."""

from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import Clock
from habitloop.database import get_session
from habitloop.dependencies import get_clock_dep, get_current_user_id, get_redis_dep
from habitloop.predictions import leaderboard_service, queries
from habitloop.predictions.poll_service import create_poll, resolve_poll, submit_vote
from habitloop.predictions.schemas import (
    CreatePollRequest,
    LeaderboardResponse,
    PollListResponse,
    PollResponse,
    PredictionStatsResponse,
    ResolutionResponse,
    ResolvePollRequest,
    VoteRequest,
    VoteResponse,
    YesterdayReviewResponse,
)

router = APIRouter(prefix="/api/v1/predictions", tags=["Predictions"])
internal_router = APIRouter(prefix="/api/v1/internal/polls", tags=["Internal"])


@router.get("/polls/active", response_model=PollListResponse)
async def active_polls(
    category: str | None = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    """Polls still open for voting, with the caller's vote."""
    rows = await queries.get_active_polls(db, user_id, clock, category)
    return PollListResponse(polls=[PollResponse(**r) for r in rows])


@router.get("/polls/resolved", response_model=PollListResponse)
async def resolved_polls(
    days: int = Query(7, ge=1, le=90),
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    """Polls resolved in the last ``days`` days."""
    end = clock.now() + timedelta(seconds=1)
    start = end - timedelta(days=days)
    rows = await queries.get_resolved_polls(db, user_id, start, end, limit)
    return PollListResponse(polls=[PollResponse(**r) for r in rows])


@router.get("/polls/yesterday", response_model=YesterdayReviewResponse)
async def yesterday_review(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    review = await queries.get_yesterday_review(db, user_id, clock)
    return YesterdayReviewResponse(
        date=review["date"],
        polls=[PollResponse(**r) for r in review["polls"]],
        summary=review["summary"],
    )


@router.post("/polls/{poll_id}/vote", response_model=VoteResponse, status_code=201)
async def vote(
    poll_id: int,
    body: VoteRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    """Cast the caller's single vote on a poll."""
    cast = await submit_vote(db, user_id, poll_id, body.choice, clock)
    return VoteResponse(poll_id=cast.poll_id, choice=cast.choice, cast_at=cast.cast_at)


@router.get("/stats/me", response_model=PredictionStatsResponse)
async def my_stats(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    return PredictionStatsResponse(**await queries.get_my_stats(db, user_id))


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    window: str = Query(leaderboard_service.WINDOW_ALLTIME),
    limit: int | None = Query(None, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
    redis: object = Depends(get_redis_dep),
):
    """Accuracy leaderboard (alltime or weekly) with the caller's position."""
    if window not in leaderboard_service.WINDOWS:
        raise HTTPException(status_code=400, detail=f"Unknown window: {window}")
    return await leaderboard_service.get_leaderboard(
        db, user_id, window, clock, redis=redis, limit=limit,
    )


# ── Internal endpoints (content pipeline / scheduler) ──


@internal_router.post("", response_model=PollResponse, status_code=201)
async def internal_create_poll(
    body: CreatePollRequest,
    db: AsyncSession = Depends(get_session),
):
    if body.deadline.tzinfo is None:
        raise HTTPException(status_code=422, detail="deadline must include a timezone")
    poll = await create_poll(db, **body.model_dump())
    return PollResponse(**queries.poll_as_dict(poll))


@internal_router.post("/{poll_id}/resolve", response_model=ResolutionResponse)
async def internal_resolve_poll(
    poll_id: int,
    body: ResolvePollRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock_dep),
):
    """Resolve a poll and pay out. Safe to call more than once."""
    summary = await resolve_poll(db, poll_id, body.correct_answer, body.source, clock)
    return ResolutionResponse(**asdict(summary))
