"""Database utility functions for cross-database compatibility."""

import logging
from typing import Any, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dialect_insert(session: AsyncSession):
    """Return the dialect-specific INSERT construct supporting ON CONFLICT, or None."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert
    return None


async def upsert(
    session: AsyncSession,
    model: type[T],
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: Optional[list[str]] = None,
) -> T:
    """
    Database-agnostic upsert on a unique key, last write wins.

    PostgreSQL and SQLite use INSERT ... ON CONFLICT DO UPDATE so concurrent
    writers resolve in the database; other dialects fall back to
    SELECT + INSERT/UPDATE.

    Args:
        session: AsyncSession instance
        model: SQLModel table class
        values: Dictionary of column values to insert/update
        conflict_columns: Columns that define uniqueness (for conflict detection)
        update_columns: Columns to update on conflict (defaults to all non-conflict columns)

    Returns:
        The persisted row, re-read after the write.

    Example:
        await upsert(
            session,
            RiskyCooldown,
            {"user_id": 1, "group_id": 2, "last_used": now},
            conflict_columns=["user_id", "group_id"],
        )
    """
    if update_columns is None:
        update_columns = [k for k in values.keys() if k not in conflict_columns]

    filters = [getattr(model, col) == values[col] for col in conflict_columns]
    insert = _dialect_insert(session)

    if insert is not None:
        stmt = insert(model).values(**values)
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict_columns,
                set_={col: getattr(stmt.excluded, col) for col in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
        await session.execute(stmt)

        result = await session.execute(
            select(model).where(*filters).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    logger.debug(f"No native upsert for dialect, using SELECT + INSERT/UPDATE on {model.__name__}")
    result = await session.execute(select(model).where(*filters))
    existing = result.scalar_one_or_none()

    if existing is not None:
        for col in update_columns:
            if col in values:
                setattr(existing, col, values[col])
        await session.flush()
        return existing

    new_instance = model(**values)
    session.add(new_instance)
    await session.flush()
    return new_instance
