"""User lookups shared by every engine that writes per-user rows."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from habitloop.db.models import User
from habitloop.errors import NotFound


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: int) -> User:
    """Return the user or raise NotFound before any row references the id."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user
