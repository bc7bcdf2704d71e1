"""Prediction arq jobs — poll resolution and leaderboard cache refresh.

Resolution is enqueued by the external scheduler once a poll's outcome is
known. A failing resolution rolls back and re-raises so arq retries it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.clock import get_clock
from habitloop.config import get_settings
from habitloop.database import close_db, get_session, init_db
from habitloop.middleware.logging import setup_logging
from habitloop.predictions.leaderboard_service import refresh_leaderboard_cache
from habitloop.predictions.poll_service import resolve_poll

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def worker_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    logger.info("Prediction worker started")


async def worker_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Prediction worker shut down")


async def resolve_poll_job(
    ctx: dict,  # type: ignore[type-arg]
    poll_id: int,
    correct_answer: str,
    source: str | None = None,
) -> dict:  # type: ignore[type-arg]
    """Resolve one poll. Duplicate deliveries are no-ops."""
    db = await _get_db_session()
    try:
        summary = await resolve_poll(db, poll_id, correct_answer, source, get_clock())
    finally:
        await db.close()
    return asdict(summary)


async def refresh_leaderboard_job(ctx: dict) -> None:  # type: ignore[type-arg]
    """Periodic task: rebuild the cached leaderboard rankings."""
    redis_client: aioredis.Redis = ctx["redis"]
    db = await _get_db_session()
    try:
        await refresh_leaderboard_cache(db, redis_client, get_clock())
    except Exception:
        logger.exception("Failed to refresh leaderboard cache")
    finally:
        await db.close()
