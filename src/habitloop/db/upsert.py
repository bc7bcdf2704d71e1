"""Dialect-aware INSERT ... ON CONFLICT helpers.

PostgreSQL in production, SQLite in the test suite; both support the same
``on_conflict_do_nothing`` / ``on_conflict_do_update`` construct.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(db: AsyncSession, model: Any):  # noqa: ANN401
    """Return an INSERT for ``model`` that supports ON CONFLICT on the session's dialect."""
    name = db.get_bind().dialect.name
    try:
        return _INSERTS[name](model)
    except KeyError:
        msg = f"Unsupported database dialect for upserts: {name}"
        raise RuntimeError(msg) from None


async def insert_if_absent(
    db: AsyncSession,
    model: Any,  # noqa: ANN401
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """Insert a row unless one already exists on ``conflict_columns``.

    Returns True when this call created the row. A single statement, so two
    sessions racing on the same key cannot both see True.
    """
    stmt = dialect_insert(db, model).values(**values).on_conflict_do_nothing(
        index_elements=conflict_columns,
    )
    result = await db.execute(stmt)
    return result.rowcount == 1
