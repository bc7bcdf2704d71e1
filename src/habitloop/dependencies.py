"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException

from habitloop.clock import get_clock
from habitloop.database import get_session as _get_session
from habitloop.redis_client import get_optional_redis

get_db = _get_session
get_clock_dep = get_clock


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None) as a FastAPI dependency."""
    yield get_optional_redis()


async def get_current_user_id(
    x_user_id: int | None = Header(default=None, alias="X-User-Id"),
) -> int:
    """Caller identity injected by the upstream gateway."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
