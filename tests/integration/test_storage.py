"""Integration tests for record storage."""

import sqlite3
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from certstore.core.config import StorageConfig
from certstore.core.exceptions import AlreadyLockedError, KeyNotFoundError
from certstore.core.hashing import hash_key
from certstore.core.storage import CertStorage, escape_like, open_storage


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "data" / "certs.sqlite"


@pytest.fixture
def storage(db_path: Path):
    """Create a store for testing."""
    config = StorageConfig(dsn=str(db_path), query_timeout=10, lock_timeout=60)
    with CertStorage.from_config(config) as store:
        yield store


class TestSchema:
    """Tests for schema bootstrap."""

    def test_creates_tables_and_trigger(self, storage: CertStorage, db_path: Path) -> None:
        """Test that both tables and the trigger exist after construction."""
        conn = sqlite3.connect(db_path)
        try:
            rows = conn.execute("SELECT type, name FROM sqlite_master ORDER BY name").fetchall()
        finally:
            conn.close()
        assert ("table", "certmagic_data") in rows
        assert ("table", "certmagic_locks") in rows
        assert ("trigger", "Trg_LastUpdated") in rows

    def test_creates_parent_directory(self, storage: CertStorage, db_path: Path) -> None:
        """Test that a missing parent directory is created."""
        assert db_path.parent.is_dir()

    def test_idempotent(self, storage: CertStorage, db_path: Path) -> None:
        """Test that opening an existing store keeps its data."""
        storage.store("test", b"kept")
        config = StorageConfig(dsn=str(db_path))
        with CertStorage.from_config(config) as reopened:
            assert reopened.load("test") == b"kept"

    def test_open_storage_uses_environment(
        self, db_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that open_storage resolves the DSN from the environment."""
        monkeypatch.setenv("sqlite_DSN", str(db_path))
        with open_storage() as store:
            assert store.config.dsn == str(db_path)
            assert store.config.query_timeout == 3.0


class TestRecords:
    """Tests for store/load/delete/exists."""

    def test_round_trip(self, storage: CertStorage) -> None:
        """Test that a stored value loads back exactly."""
        payload = bytes(range(256)) * 4
        storage.store("certificates/example.com/example.com.key", payload)
        assert storage.load("certificates/example.com/example.com.key") == payload

    def test_empty_value(self, storage: CertStorage) -> None:
        """Test that an empty payload is stored and loaded."""
        storage.store("empty", b"")
        assert storage.load("empty") == b""
        assert storage.stat("empty").size == 0

    def test_overwrite(self, storage: CertStorage) -> None:
        """Test that a second store replaces the value."""
        storage.store("test", b"first")
        storage.store("test", b"second value")
        assert storage.load("test") == b"second value"
        assert storage.stat("test").size == len(b"second value")

    def test_overwrite_refreshes_modified(self, storage: CertStorage) -> None:
        """Test that the modified timestamp strictly increases on overwrite."""
        storage.store("test", b"v1")
        first = storage.stat("test").modified
        time.sleep(0.02)
        storage.store("test", b"v2")
        second = storage.stat("test").modified
        assert first is not None and second is not None
        assert second > first

    def test_rapid_overwrites_keep_modified_increasing(self, storage: CertStorage) -> None:
        """Test that back-to-back overwrites never repeat a modified time."""
        stamps = []
        for i in range(20):
            storage.store("test", f"v{i}".encode())
            stamps.append(storage.stat("test").modified)
        assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))

    def test_overwrite_after_future_timestamp(self, storage: CertStorage, db_path: Path) -> None:
        """Test that a modified time ahead of the clock still moves forward."""
        conn = sqlite3.connect(db_path)
        try:
            conn.execute(
                "INSERT INTO certmagic_data (key_hash, key, value, modified) "
                "VALUES (?, ?, ?, '2999-01-01 00:00:00.000')",
                (hash_key("future"), "future", b"v1"),
            )
            conn.commit()
        finally:
            conn.close()

        storage.store("future", b"v2")
        info = storage.stat("future")
        assert info.modified == datetime(2999, 1, 1, 0, 0, 0, 1000, tzinfo=timezone.utc)

    def test_delete(self, storage: CertStorage) -> None:
        """Test that a deleted key is gone."""
        storage.store("test", b"x")
        storage.delete("test")
        assert storage.exists("test") is False
        with pytest.raises(KeyNotFoundError):
            storage.load("test")
        with pytest.raises(KeyNotFoundError):
            storage.stat("test")

    def test_delete_missing_key(self, storage: CertStorage) -> None:
        """Test that deleting a missing key succeeds."""
        storage.delete("never-stored")

    def test_exists(self, storage: CertStorage) -> None:
        """Test that exists reflects stored keys."""
        assert storage.exists("test") is False
        storage.store("test", b"x")
        assert storage.exists("test") is True

    def test_key_column_keeps_original_key(self, storage: CertStorage, db_path: Path) -> None:
        """Test that rows are addressed by hash but keep the logical key."""
        storage.store("acme/le/account.json", b"{}")
        conn = sqlite3.connect(db_path)
        try:
            row = conn.execute("SELECT key_hash, key FROM certmagic_data").fetchone()
        finally:
            conn.close()
        assert row == (hash_key("acme/le/account.json"), "acme/le/account.json")

    def test_null_value_loads_empty(self, storage: CertStorage, db_path: Path) -> None:
        """Test that a NULL value written by another client reads as empty."""
        conn = sqlite3.connect(db_path)
        try:
            conn.execute(
                "INSERT INTO certmagic_data (key_hash, key, value) VALUES (?, ?, NULL)",
                (hash_key("legacy"), "legacy"),
            )
            conn.commit()
        finally:
            conn.close()
        assert storage.load("legacy") == b""
        assert storage.stat("legacy").size == 0


class TestStat:
    """Tests for key metadata."""

    def test_stat_fields(self, storage: CertStorage) -> None:
        """Test that stat reports size, a recent time, and a terminal key."""
        storage.store("test", b"12345")
        info = storage.stat("test")
        assert info.key == "test"
        assert info.size == 5
        assert info.is_terminal is True
        assert info.modified is not None
        assert info.modified.tzinfo is not None
        assert abs(datetime.now(timezone.utc) - info.modified) < timedelta(minutes=1)

    def test_stat_second_precision_timestamp(self, storage: CertStorage, db_path: Path) -> None:
        """Test that rows stamped with CURRENT_TIMESTAMP are parsed."""
        conn = sqlite3.connect(db_path)
        try:
            conn.execute(
                "INSERT INTO certmagic_data (key_hash, key, value, modified) "
                "VALUES (?, ?, ?, '2024-05-01 12:30:45')",
                (hash_key("old"), "old", b"abc"),
            )
            conn.commit()
        finally:
            conn.close()
        info = storage.stat("old")
        assert info.modified == datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)


class TestList:
    """Tests for prefix listing."""

    def test_prefix_match(self, storage: CertStorage) -> None:
        """Test that only keys with the prefix are listed, sorted."""
        for key in ["certificates/b.com", "certificates/a.com", "acme/account", "cert"]:
            storage.store(key, b"x")
        assert storage.list("certificates/") == ["certificates/a.com", "certificates/b.com"]

    def test_empty_prefix_lists_everything(self, storage: CertStorage) -> None:
        """Test that an empty prefix lists all keys."""
        storage.store("a", b"x")
        storage.store("b", b"x")
        assert storage.list("") == ["a", "b"]

    def test_no_matches(self, storage: CertStorage) -> None:
        """Test that listing with no matches returns an empty list."""
        assert storage.list("missing") == []

    def test_wildcards_are_literal(self, storage: CertStorage) -> None:
        """Test that % and _ in the prefix match only themselves."""
        for key in ["50%_off", "50xyoff", "a_b", "axb"]:
            storage.store(key, b"x")
        assert storage.list("50%") == ["50%_off"]
        assert storage.list("a_") == ["a_b"]

    def test_backslash_prefix(self, storage: CertStorage) -> None:
        """Test that the escape character itself matches literally."""
        storage.store("dir\\file", b"x")
        storage.store("dirXfile", b"x")
        assert storage.list("dir\\") == ["dir\\file"]

    def test_case_sensitive(self, storage: CertStorage) -> None:
        """Test that prefix matching respects case."""
        storage.store("Test", b"x")
        storage.store("test", b"x")
        assert storage.list("test") == ["test"]

    def test_quote_in_prefix(self, storage: CertStorage) -> None:
        """Test that quotes in the prefix cannot break the query."""
        storage.store("it's", b"x")
        assert storage.list("it'") == ["it's"]
        assert storage.list("' OR 1=1 --") == []

    def test_escape_like(self) -> None:
        """Test the wildcard escaping helper."""
        assert escape_like("plain") == "plain"
        assert escape_like("a%b_c\\") == "a\\%b\\_c\\\\"


class TestStats:
    """Tests for store statistics."""

    def test_counts(self, storage: CertStorage) -> None:
        """Test that stats count records and locks."""
        empty = storage.get_stats()
        assert empty.records == 0
        assert empty.last_modified is None

        storage.store("a", b"x")
        storage.store("b", b"x")
        storage.lock("a")
        stats = storage.get_stats()
        assert stats.records == 2
        assert stats.locks == 1
        assert stats.active_locks == 1
        assert stats.last_modified is not None
        assert stats.to_dict()["records"] == 2


class TestEndToEnd:
    """Store, list, inspect, delete, and lock a small key set."""

    def test_lifecycle(self, storage: CertStorage) -> None:
        """Test the full operation surface on keys sharing a prefix."""
        keys = ["test", "test1", "test2"]
        for key in keys:
            storage.store(key, key.encode())

        assert sorted(storage.list("test", False)) == keys

        for key in keys:
            assert storage.exists(key)

            info = storage.stat(key)
            assert info.size == len(key)
            assert info.modified is not None
            assert abs(datetime.now(timezone.utc) - info.modified) < timedelta(minutes=1)

            storage.delete(key)
            assert not storage.exists(key)

            storage.lock(key)
            with pytest.raises(AlreadyLockedError):
                storage.lock(key)
            storage.unlock(key)

        assert storage.list("test") == []
