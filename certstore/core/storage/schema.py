"""Schema bootstrap for the data and locks tables."""

from __future__ import annotations

import logging

from certstore.core.deadline import Deadline
from certstore.core.storage.database import Database, Queryer

logger = logging.getLogger(__name__)

DATA_TABLE = "certmagic_data"
LOCKS_TABLE = "certmagic_locks"

# Millisecond-precision UTC "now", comparable with CURRENT_TIMESTAMP text.
SQL_NOW = "strftime('%Y-%m-%d %H:%M:%f', 'now')"


def next_modified(previous: str) -> str:
    """SQL for a modified time strictly after ``previous``.

    Timestamps have millisecond resolution, so a second write within the same
    millisecond (or after a clock step back) gets ``previous`` plus 1ms.
    """
    return (
        f"CASE WHEN julianday({SQL_NOW}) > COALESCE(julianday({previous}), 0) "
        f"THEN {SQL_NOW} "
        f"ELSE strftime('%Y-%m-%d %H:%M:%f', {previous}, '+0.001 seconds') END"
    )


_DATA_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {DATA_TABLE} (
    key_hash char(40) NOT NULL,
    key TEXT NOT NULL,
    value BLOB,
    modified TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (key_hash)
)
"""

_LOCKS_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {LOCKS_TABLE} (
    key_hash char(40) NOT NULL,
    key TEXT NOT NULL,
    expires TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (key_hash)
)
"""

_NEXT_MODIFIED_FROM_OLD = next_modified("OLD.modified")

# Recursive triggers are off by default, so the inner UPDATE does not refire.
_MODIFIED_TRIGGER_SQL = f"""
CREATE TRIGGER IF NOT EXISTS Trg_LastUpdated
AFTER UPDATE OF value ON {DATA_TABLE}
FOR EACH ROW
BEGIN
    UPDATE {DATA_TABLE} SET modified = {_NEXT_MODIFIED_FROM_OLD}
    WHERE key_hash = OLD.key_hash;
END
"""

SCHEMA_STATEMENTS = (_DATA_TABLE_SQL, _LOCKS_TABLE_SQL, _MODIFIED_TRIGGER_SQL)


def create_schema(q: Queryer) -> None:
    """Run the schema statements on an open pool or transaction."""
    for statement in SCHEMA_STATEMENTS:
        q.execute(statement)


def ensure_schema(db: Database, *, deadline: Deadline | None = None) -> None:
    """Create the tables and trigger if absent, all in one transaction.

    Safe to call on every start. Raises DatabaseError and leaves nothing
    behind if any statement fails.
    """
    logger.debug("Ensuring schema on %s", db.dsn)
    with db.transaction(immediate=True, deadline=deadline) as tx:
        create_schema(tx)
