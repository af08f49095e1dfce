"""Database engine helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql.schema import Table

from commission_dash.config import Settings


def create_engine_from_settings(settings: Settings) -> Engine:
    """Create an engine for the configured DATABASE_URL."""
    return create_engine(settings.database_url, pool_pre_ping=True, future=True)


def upsert(conn: Connection, table: Table, rows: list[dict[str, Any]], *, key: str) -> None:
    """Insert ``rows`` into ``table``, overwriting rows that share ``key``."""
    if not rows:
        return
    dialect_insert = sqlite.insert if conn.dialect.name == "sqlite" else postgresql.insert
    stmt = dialect_insert(table).values(rows)
    updates = {name: stmt.excluded[name] for name in rows[0] if name != key}
    conn.execute(stmt.on_conflict_do_update(index_elements=[table.c[key]], set_=updates))
