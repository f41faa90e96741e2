"""Centralized database configuration

InboxQ keeps customer records (OAuth credentials) in ONE SQLite database,
``inboxq/data/inboxq.db`` by default, reached through ``get_db_connection()``.
The email cache's durable tier is a separate file owned by
``inboxq.storage.persistent_store`` and is not managed here.

Provides:
- Connection pooling (reuses connections, WAL mode)
- Single source of truth for the database path
- Retry on SQLITE_BUSY with exponential backoff
- Idempotent schema initialization
"""

from __future__ import annotations

import atexit
import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import lru_cache, wraps
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, TypeVar

from inboxq.config import (
    DB_CONNECT_TIMEOUT,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from inboxq.observability.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

DB_PATH = Path(__file__).parent.parent / "data" / "inboxq.db"

logger = get_logger(__name__)


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Usage:
        @retry_on_db_lock()
        def save(...):
            with db_transaction() as conn:
                conn.execute("UPDATE ...")

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * DB_RETRY_JITTER)
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)
            return None

        return wrapper  # type: ignore[return-value]

    return decorator


class DatabaseConnectionPool:
    """
    Thread-safe connection pool for SQLite

    ``pool_size`` connections are opened up front and reused; when the
    pool is exhausted a temporary connection is opened and closed on return.
    """

    def __init__(self, db_path: Path, pool_size: int = DB_POOL_SIZE):
        self.db_path = db_path
        self.pool_size = pool_size
        self.pool: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self.closed = False
        self._temporary: set[int] = set()
        for _ in range(pool_size):
            self.pool.put(self._create_connection())

        atexit.register(self.close_all)

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=DB_CONNECT_TIMEOUT,
            check_same_thread=False,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.row_factory = sqlite3.Row
        return conn

    def get_connection(self) -> sqlite3.Connection:
        if self.closed:
            raise RuntimeError("Connection pool has been closed")

        try:
            return self.pool.get(block=True, timeout=DB_POOL_TIMEOUT)
        except Empty:
            logger.error(
                "Connection pool exhausted (pool_size=%d), opening temporary connection",
                self.pool_size,
            )
            conn = self._create_connection()
            self._temporary.add(id(conn))
            return conn

    def return_connection(self, conn: sqlite3.Connection) -> None:
        if id(conn) in self._temporary:
            self._temporary.discard(id(conn))
            conn.close()
            return
        if self.closed:
            conn.close()
            return

        try:
            self.pool.put_nowait(conn)
        except Full:
            logger.warning("Failed to return connection to pool (pool full), closing")
            conn.close()

    def close_all(self) -> None:
        self.closed = True
        while True:
            try:
                self.pool.get_nowait().close()
            except Empty:
                break


def get_db_path() -> Path:
    """
    Get database path (environment-aware)

    Checks INBOXQ_DB_PATH first, falls back to the default location.
    """
    if env_path := os.getenv("INBOXQ_DB_PATH"):
        return Path(env_path)

    return DB_PATH


@lru_cache(maxsize=8)
def _pool_for(db_path: str) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(Path(db_path), pool_size=DB_POOL_SIZE)


def get_pool() -> DatabaseConnectionPool:
    """Pool for the current database path (one pool per path per process)."""
    return _pool_for(str(get_db_path()))


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """
    Get pooled database connection (context manager)

    Raises:
        FileNotFoundError: If the database has not been initialized
    """
    db_path = get_db_path()

    if not db_path.exists():
        raise FileNotFoundError(f"Database not found: {db_path}\nRun init_database() first")

    pool = get_pool()
    conn = pool.get_connection()
    try:
        yield conn
    finally:
        pool.return_connection(conn)


@contextmanager
def db_transaction() -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database transactions

    Commits on success, rolls back on error.
    """
    with get_db_connection() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def init_database() -> None:
    """
    Initialize database with schema (idempotent)

    Side Effects:
    - Creates the data directory and tables if they don't exist
    """
    from inboxq.infrastructure.database_schema import init_database as _init_database

    _init_database(get_db_path())


def validate_schema() -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables are missing
    """
    from inboxq.infrastructure.database_schema import validate_schema as _validate_schema

    with get_db_connection() as conn:
        return _validate_schema(conn)
