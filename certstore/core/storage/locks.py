"""Lease-based advisory locks."""

from __future__ import annotations

import logging

from certstore.core.deadline import Deadline
from certstore.core.exceptions import AlreadyLockedError
from certstore.core.hashing import hash_key
from certstore.core.models import LockRecord
from certstore.core.storage.database import Database, Queryer
from certstore.core.storage.schema import LOCKS_TABLE

logger = logging.getLogger(__name__)

# Insert a lease, or take over an existing row only once it has expired.
# julianday() copes with timestamps written in other formats or offsets.
_ACQUIRE_SQL = f"""
INSERT INTO {LOCKS_TABLE} (key_hash, key, expires)
VALUES (?, ?, strftime('%Y-%m-%d %H:%M:%f', 'now', ?))
ON CONFLICT(key_hash) DO UPDATE SET key = excluded.key, expires = excluded.expires
WHERE COALESCE(julianday({LOCKS_TABLE}.expires), 0) <= julianday('now')
"""

_IS_LOCKED_SQL = f"""
SELECT EXISTS(
    SELECT 1 FROM {LOCKS_TABLE}
    WHERE key_hash = ? AND julianday(expires) > julianday('now')
) AS locked
"""

_LIST_SQL = f"""
SELECT key_hash, key,
       strftime('%Y-%m-%d %H:%M:%f', expires) AS expires,
       COALESCE(julianday(expires) > julianday('now'), 0) AS live
FROM {LOCKS_TABLE}
ORDER BY key
"""


def try_acquire(q: Queryer, key: str, lock_timeout: float) -> bool:
    """Write a lease on ``key`` unless a live one exists. Returns True on success."""
    lease = f"+{lock_timeout:.3f} seconds"
    return q.execute(_ACQUIRE_SQL, (hash_key(key), key, lease)) > 0


def lease_held(q: Queryer, key: str, *, deadline: Deadline | None = None) -> bool:
    """Return True if ``key`` has a lock row that has not expired."""
    row = q.query_row(_IS_LOCKED_SQL, (hash_key(key),), deadline=deadline)
    return bool(row and row["locked"])


class LockManager:
    """Acquire and release named leases stored in the locks table."""

    def __init__(self, db: Database, lock_timeout: float) -> None:
        self._db = db
        self._lock_timeout = lock_timeout

    def lock(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Take the lease on ``key`` for ``lock_timeout`` seconds.

        The check for a live lease and the write happen in one conditional
        upsert inside a write transaction, so two callers can never both win.

        Raises:
            AlreadyLockedError: another lease on the key has not expired.
            DatabaseError: the database call failed or timed out.
        """
        logger.debug("Locking %s for %ss", hash_key(key), self._lock_timeout)
        with self._db.transaction(immediate=True, deadline=deadline) as tx:
            acquired = try_acquire(tx, key, self._lock_timeout)
        if not acquired:
            raise AlreadyLockedError(f"key is locked: {key}")

    def unlock(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Release the lease on ``key``. Unlocking an unlocked key is a no-op."""
        key_hash = hash_key(key)
        logger.debug("Unlocking %s", key_hash)
        self._db.execute(
            f"DELETE FROM {LOCKS_TABLE} WHERE key_hash = ?", (key_hash,), deadline=deadline
        )

    def is_locked(self, key: str, *, deadline: Deadline | None = None) -> bool:
        """Return True if a lease on ``key`` exists and has not expired."""
        return lease_held(self._db, key, deadline=deadline)

    def list_locks(self, *, deadline: Deadline | None = None) -> list[LockRecord]:
        """Return every lock row, live or expired."""
        rows = self._db.query_rows(_LIST_SQL, deadline=deadline)
        return [LockRecord.from_row(row) for row in rows]

    def count(self, *, deadline: Deadline | None = None) -> tuple[int, int]:
        """Return (all lock rows, live lock rows)."""
        row = self._db.query_row(
            f"SELECT COUNT(*) AS total, "
            f"COALESCE(SUM(julianday(expires) > julianday('now')), 0) AS live "
            f"FROM {LOCKS_TABLE}",
            deadline=deadline,
        )
        if row is None:
            return 0, 0
        return row["total"], row["live"]
