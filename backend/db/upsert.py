"""
Dialect-aware INSERT ... ON CONFLICT helpers.

PostgreSQL in production, SQLite in tests; both support ON CONFLICT
against a unique constraint's columns.
"""

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, model):
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


async def insert_ignore(
    db: AsyncSession,
    model,
    values: dict[str, Any] | list[dict[str, Any]],
    conflict_columns: list[str],
) -> int:
    """Insert rows, skipping any that collide on `conflict_columns`.

    Returns the number of rows actually inserted.
    """
    if isinstance(values, list) and not values:
        return 0
    stmt = dialect_insert(db, model).values(values).on_conflict_do_nothing(index_elements=conflict_columns)
    result = await db.execute(stmt)
    return max(result.rowcount or 0, 0)


async def upsert(
    db: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> None:
    """Insert a row or overwrite every non-key column of the existing one."""
    stmt = dialect_insert(db, model).values(**values)
    update_columns = {
        key: stmt.excluded[key] for key in values if key not in conflict_columns and key not in ("id", "created_at")
    }
    stmt = stmt.on_conflict_do_update(index_elements=conflict_columns, set_=update_columns)
    await db.execute(stmt)
