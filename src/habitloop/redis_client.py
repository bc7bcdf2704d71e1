"""Optional Redis connection pool.

Redis backs rate limiting, the leaderboard cache and pub/sub events, and
none of them is required: with ``HABITLOOP_REDIS_URL`` empty the pool stays
unset and callers get ``None``.
"""

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str | None) -> redis.Redis | None:
    """Create the pool, or leave Redis disabled when ``url`` is empty."""
    global _pool  # noqa: PLW0603
    if not url:
        _pool = None
        return None
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    return _pool


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_optional_redis() -> redis.Redis | None:
    """The shared client, or None when Redis is not configured."""
    return _pool
