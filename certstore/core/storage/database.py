"""Database handle shared by the schema, lock and record layers.

Both ``Database`` (a small connection pool) and ``Transaction`` satisfy the
``Queryer`` protocol, so storage code is agnostic to which one it receives.
"""

from __future__ import annotations

import logging
import queue
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

from certstore.core.deadline import Deadline, bounded
from certstore.core.exceptions import DatabaseError, QueryTimeoutError

logger = logging.getLogger(__name__)

Params = Sequence[Any]

# SQLite VM instructions between deadline checks.
_PROGRESS_INTERVAL = 1000

# Sleep between retries of a statement blocked by another connection's lock.
_RETRY_BACKOFF_SECONDS = 0.005
_RETRY_BACKOFF_MAX_SECONDS = 0.1


class Queryer(Protocol):
    """Statement execution capability."""

    def execute(self, sql: str, params: Params = (), *, deadline: Deadline | None = None) -> int:
        """Run a statement and return the number of rows it changed."""

    def query_row(
        self, sql: str, params: Params = (), *, deadline: Deadline | None = None
    ) -> sqlite3.Row | None:
        """Return the first result row, or None."""

    def query_rows(
        self, sql: str, params: Params = (), *, deadline: Deadline | None = None
    ) -> list[sqlite3.Row]:
        """Return all result rows."""


@contextmanager
def _guarded(conn: sqlite3.Connection, deadline: Deadline) -> Iterator[None]:
    """Interrupt ``conn`` when the deadline passes and wrap sqlite3 errors."""
    if deadline.expired():
        raise QueryTimeoutError(deadline.describe())
    conn.set_progress_handler(deadline.progress_check, _PROGRESS_INTERVAL)
    try:
        yield
    except sqlite3.OperationalError as exc:
        if deadline.expired():
            raise QueryTimeoutError(f"{deadline.describe()}: {exc}") from exc
        raise DatabaseError(str(exc)) from exc
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc
    finally:
        conn.set_progress_handler(None, 0)


def _is_locked_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return (
        "database is locked" in message
        or "database table is locked" in message
        or "database schema is locked" in message
    )


def _run(
    conn: sqlite3.Connection, sql: str, params: Params, deadline: Deadline
) -> sqlite3.Cursor:
    """Execute one statement, retrying while the database is locked.

    Connections do not use SQLite's own busy handler, which cannot see the
    deadline or its cancel event. Retries stop once the deadline expires.
    """
    delay = _RETRY_BACKOFF_SECONDS
    while True:
        try:
            return conn.execute(sql, tuple(params))
        except sqlite3.OperationalError as exc:
            if not _is_locked_error(exc) or not deadline.wait(delay):
                raise
        delay = min(delay * 2, _RETRY_BACKOFF_MAX_SECONDS)


class Transaction:
    """An open transaction on one pooled connection."""

    def __init__(self, conn: sqlite3.Connection, deadline: Deadline) -> None:
        self._conn = conn
        self._deadline = deadline

    def _effective(self, deadline: Deadline | None) -> Deadline:
        if deadline is None or deadline.expires_at > self._deadline.expires_at:
            return self._deadline
        return deadline

    def execute(self, sql: str, params: Params = (), *, deadline: Deadline | None = None) -> int:
        effective = self._effective(deadline)
        with _guarded(self._conn, effective):
            return _run(self._conn, sql, params, effective).rowcount

    def query_row(
        self, sql: str, params: Params = (), *, deadline: Deadline | None = None
    ) -> sqlite3.Row | None:
        effective = self._effective(deadline)
        with _guarded(self._conn, effective):
            row: sqlite3.Row | None = _run(self._conn, sql, params, effective).fetchone()
            return row

    def query_rows(
        self, sql: str, params: Params = (), *, deadline: Deadline | None = None
    ) -> list[sqlite3.Row]:
        effective = self._effective(deadline)
        with _guarded(self._conn, effective):
            return _run(self._conn, sql, params, effective).fetchall()


class Database:
    """Pool of SQLite connections to one database.

    Connections run in autocommit mode; multi-statement work goes through
    ``transaction()``. Every call is bounded by ``query_timeout`` seconds,
    or by the caller's deadline when that is earlier, including time spent
    waiting for another connection to release the database.
    """

    def __init__(self, dsn: str, query_timeout: float, pool_size: int = 4) -> None:
        self.dsn = dsn
        self.query_timeout = query_timeout
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue(maxsize=pool_size)
        self._closed = False

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.dsn,
                timeout=0,
                isolation_level=None,
                check_same_thread=False,
                uri=self.dsn.startswith("file:"),
            )
        except sqlite3.Error as exc:
            raise DatabaseError(f"cannot open database {self.dsn}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        logger.debug("Opened connection to %s", self.dsn)
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection from the pool for one unit of work."""
        if self._closed:
            raise DatabaseError("database is closed")
        try:
            conn = self._idle.get_nowait()
        except queue.Empty:
            conn = self._connect()
        try:
            yield conn
        finally:
            self._release(conn)

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.rollback()
        if self._closed:
            conn.close()
            return
        try:
            self._idle.put_nowait(conn)
        except queue.Full:
            conn.close()

    def execute(self, sql: str, params: Params = (), *, deadline: Deadline | None = None) -> int:
        effective = bounded(deadline, self.query_timeout)
        with self.connection() as conn, _guarded(conn, effective):
            return _run(conn, sql, params, effective).rowcount

    def query_row(
        self, sql: str, params: Params = (), *, deadline: Deadline | None = None
    ) -> sqlite3.Row | None:
        effective = bounded(deadline, self.query_timeout)
        with self.connection() as conn, _guarded(conn, effective):
            row: sqlite3.Row | None = _run(conn, sql, params, effective).fetchone()
            return row

    def query_rows(
        self, sql: str, params: Params = (), *, deadline: Deadline | None = None
    ) -> list[sqlite3.Row]:
        effective = bounded(deadline, self.query_timeout)
        with self.connection() as conn, _guarded(conn, effective):
            return _run(conn, sql, params, effective).fetchall()

    @contextmanager
    def transaction(
        self, *, immediate: bool = False, deadline: Deadline | None = None
    ) -> Iterator[Transaction]:
        """Run a block in one transaction.

        Commits when the block exits normally and rolls back on any exception.
        ``immediate`` takes the database write lock up front.
        """
        effective = bounded(deadline, self.query_timeout)
        with self.connection() as conn:
            with _guarded(conn, effective):
                _run(conn, "BEGIN IMMEDIATE" if immediate else "BEGIN", (), effective)
            try:
                yield Transaction(conn, effective)
                with _guarded(conn, effective):
                    _run(conn, "COMMIT", (), effective)
            finally:
                if conn.in_transaction:
                    conn.rollback()

    def close(self) -> None:
        """Close all idle connections; borrowed ones close when returned."""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()


def ensure_parent_dir(dsn: str) -> None:
    """Create the directory holding a file DSN, if missing."""
    if dsn == ":memory:" or dsn.startswith("file:"):
        return
    Path(dsn).parent.mkdir(parents=True, exist_ok=True)
