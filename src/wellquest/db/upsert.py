"""Dialect-aware ``INSERT ... ON CONFLICT DO NOTHING``.

Uniqueness is enforced by the database, never by a read-then-write check.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def insert_ignoring_conflict(
    db: AsyncSession,
    model: type,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> Any:
    """Build an insert for ``model`` that silently skips rows violating ``conflict_columns``."""
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"No conflict-ignoring insert for dialect '{dialect}'") from None
    return insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
