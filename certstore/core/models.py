"""Data models for CertStore."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

# Normalized form of every timestamp read back from SQLite (always UTC).
_SQL_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a normalized SQLite timestamp into an aware UTC datetime."""
    if value is None:
        return None
    return datetime.strptime(value, _SQL_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class KeyInfo:
    """Metadata about a stored key."""

    key: str
    modified: datetime | None
    size: int
    is_terminal: bool = True

    @classmethod
    def from_row(cls, key: str, row: sqlite3.Row) -> KeyInfo:
        """Create a KeyInfo from a ``size, modified`` row."""
        return cls(
            key=key,
            modified=parse_timestamp(row["modified"]),
            size=row["size"],
            is_terminal=True,
        )


@dataclass(frozen=True)
class LockRecord:
    """A row of the locks table."""

    key_hash: str
    key: str
    expires: datetime | None
    live: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> LockRecord:
        """Create a LockRecord from a database row."""
        return cls(
            key_hash=row["key_hash"],
            key=row["key"],
            expires=parse_timestamp(row["expires"]),
            live=bool(row["live"]),
        )


@dataclass(frozen=True)
class StorageStats:
    """Counts describing the contents of a store."""

    records: int
    locks: int
    active_locks: int
    last_modified: datetime | None

    def to_dict(self) -> dict[str, int | str | None]:
        return {
            "records": self.records,
            "locks": self.locks,
            "active_locks": self.active_locks,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
        }
