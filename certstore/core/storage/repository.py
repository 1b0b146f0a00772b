"""Storage facade that coordinates schema, records, and locks."""

from __future__ import annotations

import logging

from certstore.core.config import StorageConfig
from certstore.core.deadline import Deadline
from certstore.core.exceptions import CertStoreError
from certstore.core.models import KeyInfo, StorageStats
from certstore.core.storage.database import Database, ensure_parent_dir
from certstore.core.storage.locks import LockManager
from certstore.core.storage.records import RecordStore
from certstore.core.storage.schema import ensure_schema

logger = logging.getLogger(__name__)


class CertStorage:
    """Key-value store with advisory locks, backed by a SQLite database.

    Build one with ``from_config``, which also bootstraps the schema. The
    instance keeps no per-key state; every call goes to the database, so
    several processes can share one file.
    """

    def __init__(self, db: Database, config: StorageConfig) -> None:
        self._db = db
        self.config = config

        self.records = RecordStore(db)
        self.locks = LockManager(db, config.lock_timeout)

    @classmethod
    def from_config(cls, config: StorageConfig) -> CertStorage:
        """Open the database described by ``config`` and ensure its schema.

        Raises:
            ConfigurationError: the config is incomplete or invalid.
            DatabaseError: the database cannot be opened or initialized.
        """
        config.validate()
        ensure_parent_dir(config.dsn)
        db = Database(config.dsn, config.query_timeout)
        try:
            ensure_schema(db)
        except CertStoreError:
            db.close()
            raise
        logger.debug("Opened storage at %s", config.dsn)
        return cls(db, config)

    def close(self) -> None:
        """Close the database connections."""
        self._db.close()

    def __enter__(self) -> CertStorage:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def store(self, key: str, value: bytes, *, deadline: Deadline | None = None) -> None:
        self.records.store(key, value, deadline=deadline)

    def load(self, key: str, *, deadline: Deadline | None = None) -> bytes:
        return self.records.load(key, deadline=deadline)

    def delete(self, key: str, *, deadline: Deadline | None = None) -> None:
        self.records.delete(key, deadline=deadline)

    def exists(self, key: str, *, deadline: Deadline | None = None) -> bool:
        return self.records.exists(key, deadline=deadline)

    def list(
        self, prefix: str, recursive: bool = False, *, deadline: Deadline | None = None
    ) -> list[str]:
        """Return the stored keys starting with ``prefix``."""
        return self.records.list_keys(prefix, recursive, deadline=deadline)

    def stat(self, key: str, *, deadline: Deadline | None = None) -> KeyInfo:
        return self.records.stat(key, deadline=deadline)

    def lock(self, key: str, *, deadline: Deadline | None = None) -> None:
        self.locks.lock(key, deadline=deadline)

    def unlock(self, key: str, *, deadline: Deadline | None = None) -> None:
        self.locks.unlock(key, deadline=deadline)

    def is_locked(self, key: str, *, deadline: Deadline | None = None) -> bool:
        return self.locks.is_locked(key, deadline=deadline)

    def get_stats(self) -> StorageStats:
        """Get record and lock counts."""
        total_locks, live_locks = self.locks.count()
        return StorageStats(
            records=self.records.count(),
            locks=total_locks,
            active_locks=live_locks,
            last_modified=self.records.last_modified(),
        )


def open_storage(config: StorageConfig | None = None) -> CertStorage:
    """Open a store, resolving any missing settings from the environment."""
    return CertStorage.from_config(config or StorageConfig.from_env())
