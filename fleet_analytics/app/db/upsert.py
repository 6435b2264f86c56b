"""
Dialect-aware INSERT construct for atomic upserts.

Both PostgreSQL and SQLite support INSERT .. ON CONFLICT DO UPDATE with
RETURNING, which lets an increment happen in a single statement.
"""

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(db: AsyncSession, table: Table):
    """Return an INSERT for `table` that supports on_conflict_do_update."""
    dialect = db.bind.dialect.name
    try:
        return _INSERTS[dialect](table)
    except KeyError:
        raise NotImplementedError(f"Atomic upsert is not supported on {dialect}") from None
