"""SQLite connections for the job store.

The engine writes from the dispatcher, worker and cleanup threads, so all
writes go through one shared connection under a lock while reads open
short-lived connections of their own (WAL lets them run alongside a write).
"""

from __future__ import annotations

import logging
import random
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUSY_TIMEOUT_MS = 10_000

_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}",
    "PRAGMA temp_store = MEMORY",
)


class DatabaseLockedError(Exception):
    """The job database stayed locked through every retry.

    Attributes:
        attempts: How many times the operation was tried.
    """

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"Job database is locked (gave up after {attempts} attempts); "
            "another mediashrink process may be using it"
        )


def open_connection(
    db_path: Path, timeout: float = 30.0, *, threaded: bool = False
) -> sqlite3.Connection:
    """Open ``db_path`` with the engine's PRAGMAs and ``sqlite3.Row`` rows.

    Args:
        db_path: Database file; its directory is created if needed.
        timeout: Seconds sqlite waits on a lock before raising.
        threaded: Allow the connection to be used from other threads.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(db_path), timeout=timeout, check_same_thread=not threaded
    )
    for pragma in _PRAGMAS:
        conn.execute(pragma)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_connection(
    db_path: Path, timeout: float = 30.0
) -> Iterator[sqlite3.Connection]:
    """Standalone connection, closed on exit. Used for schema setup."""
    conn = open_connection(db_path, timeout)
    try:
        yield conn
    finally:
        conn.close()


def is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).casefold()
    return "locked" in message or "busy" in message


def execute_with_retry(
    func: Callable[[], T],
    max_retries: int = 5,
    base_delay: float = 0.1,
    max_delay: float = 5.0,
    jitter: float = 0.1,
) -> T:
    """Call ``func``, retrying with exponential backoff while the db is locked.

    Args:
        func: The database operation.
        max_retries: Retries after the first attempt.
        base_delay: First backoff in seconds; doubles up to ``max_delay``.
        max_delay: Backoff ceiling in seconds.
        jitter: Fraction of the delay randomly added or removed.

    Raises:
        DatabaseLockedError: Still locked after the last retry.
        sqlite3.OperationalError: Any error that is not lock contention.
    """
    attempts = max_retries + 1
    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            result = func()
        except sqlite3.OperationalError as e:
            if not is_lock_error(e):
                raise
            if attempt == attempts:
                logger.warning("Job database still locked after %d attempts", attempt)
                raise DatabaseLockedError(attempts) from e
            pause = delay * random.uniform(1 - jitter, 1 + jitter)  # nosec B311
            logger.info(
                "Job database locked (attempt %d/%d), retrying in %.2fs",
                attempt,
                attempts,
                pause,
            )
            time.sleep(pause)
            delay = min(delay * 2, max_delay)
        else:
            if attempt > 1:
                logger.info("Database write went through on attempt %d", attempt)
            return result
    raise AssertionError("unreachable")


class DaemonConnectionPool:
    """Connections for a long-running engine process.

    Reads get a fresh connection per call. Writes share one connection and
    run one at a time under ``_write_lock``; ``transaction()`` takes the
    SQLite write lock up front with ``BEGIN IMMEDIATE``.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self._write_lock = threading.Lock()
        self._writer: sqlite3.Connection | None = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Connection pool is closed")

    def _write_connection(self) -> sqlite3.Connection:
        # Caller holds _write_lock
        self._ensure_open()
        if self._writer is None:
            self._writer = open_connection(self.db_path, self.timeout, threaded=True)
        return self._writer

    @contextmanager
    def read_connection(self) -> Iterator[sqlite3.Connection]:
        self._ensure_open()
        with get_connection(self.db_path, self.timeout) as conn:
            yield conn

    def execute_read(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.read_connection() as conn:
            return conn.execute(query, params).fetchall()

    def execute_write(self, query: str, params: tuple = ()) -> int:
        """Run one statement and commit. Returns the affected row count."""
        with self._write_lock:
            conn = self._write_connection()
            rowcount = conn.execute(query, params).rowcount
            conn.commit()
            return rowcount

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Atomic write block: commit on success, roll back on any exception.

        Example:
            with pool.transaction() as conn:
                requeue_active_jobs(conn)
        """
        with self._write_lock:
            conn = self._write_connection()
            started = time.monotonic()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            held = time.monotonic() - started
            if held > self.timeout * 0.8:
                logger.warning("Write transaction held the lock for %.2fs", held)

    def close(self) -> None:
        with self._write_lock:
            self._closed = True
            writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()
