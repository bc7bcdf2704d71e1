"""Shared test fixtures.

Every test gets a fresh file-backed SQLite database (through aiosqlite) so
concurrent sessions really are separate connections. Redis is left
uninitialized; every service accepts ``redis=None``.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

os.environ.setdefault("HABITLOOP_REDIS_URL", "")
os.environ.setdefault("HABITLOOP_LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from habitloop.clock import FixedClock, get_clock
from habitloop.config import get_settings
from habitloop.database import get_session
from habitloop.db.base import Base
from habitloop.db.models import Poll, User

APP_TZ = "Asia/Seoul"
# Wednesday 2026-03-04 12:00 in Seoul.
START = datetime(2026, 3, 4, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START, APP_TZ)


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    get_settings.cache_clear()
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'habitloop.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, clock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the ASGI app, wired to the test database and clock."""
    from habitloop.main import create_app

    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def make_user(db) -> Callable[..., Awaitable[User]]:
    """Factory: insert a user and return it."""
    counter = {"n": 0}

    async def _make(
        email: str | None = None,
        is_subscriber: bool = False,
        display_name: str | None = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            display_name=display_name,
            is_subscriber=is_subscriber,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def make_poll(db, clock) -> Callable[..., Awaitable[Poll]]:
    """Factory: insert an OPEN poll whose deadline is a day after the clock."""

    async def _make(
        deadline: datetime | None = None,
        category: str = "stocks",
        base_reward_credits: int = 2,
        question: str = "Will KOSPI close higher today?",
    ) -> Poll:
        poll = Poll(
            question=question,
            category=category,
            deadline=deadline or clock.now() + timedelta(days=1),
            base_reward_credits=base_reward_credits,
        )
        db.add(poll)
        await db.commit()
        return poll

    return _make


async def fetch(db: AsyncSession, model, *criteria):
    """Load a single row, bypassing whatever the identity map holds."""
    result = await db.execute(
        select(model).where(*criteria).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
