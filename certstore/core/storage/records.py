"""Record storage operations."""

from __future__ import annotations

import logging
from datetime import datetime

from certstore.core.deadline import Deadline
from certstore.core.exceptions import DatabaseError, KeyNotFoundError, UnsupportedOperationError
from certstore.core.hashing import hash_key
from certstore.core.models import KeyInfo, parse_timestamp
from certstore.core.storage.database import Database
from certstore.core.storage.schema import DATA_TABLE, SQL_NOW, next_modified

logger = logging.getLogger(__name__)

_LIKE_ESCAPE = "\\"

_NEXT_MODIFIED = next_modified(f"{DATA_TABLE}.modified")

_UPSERT_SQL = f"""
INSERT INTO {DATA_TABLE} (key_hash, key, value, modified) VALUES (?, ?, ?, {SQL_NOW})
ON CONFLICT(key_hash) DO UPDATE SET
    value = excluded.value,
    modified = {_NEXT_MODIFIED}
"""

# LIKE folds ASCII case, so the substr() comparison keeps the match exact.
_LIST_SQL = f"""
SELECT key FROM {DATA_TABLE}
WHERE key LIKE ? ESCAPE '{_LIKE_ESCAPE}' AND substr(key, 1, ?) = ?
ORDER BY key
"""

_STAT_SQL = f"""
SELECT COALESCE(length(value), 0) AS size,
       strftime('%Y-%m-%d %H:%M:%f', modified) AS modified
FROM {DATA_TABLE} WHERE key_hash = ?
"""


def escape_like(prefix: str) -> str:
    """Escape LIKE wildcards so the prefix matches literally."""
    return (
        prefix.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


class RecordStore:
    """Storage operations for the data table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def store(self, key: str, value: bytes, *, deadline: Deadline | None = None) -> None:
        """Insert or overwrite the value at ``key``. Last writer wins.

        Each overwrite moves ``modified`` forward, by at least 1ms.
        """
        key_hash = hash_key(key)
        logger.debug("Storing %d bytes at %s", len(value), key_hash)
        self._db.execute(_UPSERT_SQL, (key_hash, key, bytes(value)), deadline=deadline)

    def load(self, key: str, *, deadline: Deadline | None = None) -> bytes:
        """Return the value at ``key``.

        Raises:
            KeyNotFoundError: nothing is stored at the key.
        """
        key_hash = hash_key(key)
        logger.debug("Loading %s", key_hash)
        row = self._db.query_row(
            f"SELECT value FROM {DATA_TABLE} WHERE key_hash = ?", (key_hash,), deadline=deadline
        )
        if row is None:
            raise KeyNotFoundError(f"key not found: {key}")
        value = row["value"]
        if value is None:
            return b""
        return bytes(value)

    def delete(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Delete ``key``. Deleting a missing key is not an error."""
        key_hash = hash_key(key)
        logger.debug("Deleting %s", key_hash)
        self._db.execute(
            f"DELETE FROM {DATA_TABLE} WHERE key_hash = ?", (key_hash,), deadline=deadline
        )

    def exists(self, key: str, *, deadline: Deadline | None = None) -> bool:
        """Return True if ``key`` is stored. Database errors count as absent."""
        key_hash = hash_key(key)
        try:
            row = self._db.query_row(
                f"SELECT EXISTS(SELECT 1 FROM {DATA_TABLE} WHERE key_hash = ?) AS found",
                (key_hash,),
                deadline=deadline,
            )
        except DatabaseError as exc:
            logger.warning("Existence check for %s failed, reporting absent: %s", key_hash, exc)
            return False
        return bool(row and row["found"])

    def list_keys(
        self, prefix: str, recursive: bool = False, *, deadline: Deadline | None = None
    ) -> list[str]:
        """Return the stored keys that start with ``prefix``, sorted.

        Keys are not hierarchical, so recursive listing is refused.
        """
        if recursive:
            raise UnsupportedOperationError("recursive listing not supported")
        logger.debug("Listing keys with prefix %r", prefix)
        rows = self._db.query_rows(
            _LIST_SQL,
            (escape_like(prefix) + "%", len(prefix), prefix),
            deadline=deadline,
        )
        return [row["key"] for row in rows]

    def stat(self, key: str, *, deadline: Deadline | None = None) -> KeyInfo:
        """Return size and modification time of ``key``.

        Raises:
            KeyNotFoundError: nothing is stored at the key.
        """
        key_hash = hash_key(key)
        row = self._db.query_row(_STAT_SQL, (key_hash,), deadline=deadline)
        if row is None:
            raise KeyNotFoundError(f"key not found: {key}")
        return KeyInfo.from_row(key, row)

    def count(self, *, deadline: Deadline | None = None) -> int:
        row = self._db.query_row(f"SELECT COUNT(*) AS n FROM {DATA_TABLE}", deadline=deadline)
        return row["n"] if row else 0

    def last_modified(self, *, deadline: Deadline | None = None) -> datetime | None:
        row = self._db.query_row(
            f"SELECT strftime('%Y-%m-%d %H:%M:%f', MAX(modified)) AS modified FROM {DATA_TABLE}",
            deadline=deadline,
        )
        return parse_timestamp(row["modified"]) if row else None
