"""Dialect-specific INSERT for ON CONFLICT support (PostgreSQL and SQLite)."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(db: AsyncSession, table: Any) -> Any:
    """Return an ``insert()`` construct that supports ``on_conflict_*``."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    msg = f"Conditional insert is not supported on dialect {dialect!r}"
    raise RuntimeError(msg)
