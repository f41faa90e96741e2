"""Durable key/value store for the email cache.

A single SQLite file holds ``cache(key, value, timestamp)`` rows with JSON
values. When the file cannot be opened (read-only filesystem, sandbox,
missing engine, corrupt file) the store switches for the rest of its life to
an in-process dict. Only ``connect()`` reports that switch; ``get``/``set``/
``clear`` never raise once connected; after ``close()`` they fall back to the
dict and the status says so.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from inboxq.config import CACHE_DB_PATH, DB_CONNECT_TIMEOUT
from inboxq.infrastructure.errors import StorageDegraded
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event
from inboxq.storage.models import EmailCacheData

logger = get_logger(__name__)

DURABLE = "durable"
MEMORY_ONLY = "memory_only"
CLOSED = "store closed"


@dataclass(frozen=True)
class StoreStatus:
    ok: bool
    degraded: bool
    reason: str | None = None

    @property
    def mode(self) -> str:
        return MEMORY_ONLY if self.degraded else DURABLE


class PersistentStore:
    """SQLite-backed store with a permanent in-memory degradation path."""

    def __init__(self, db_path: Path | str | None = None, durable: bool = True):
        self.db_path = Path(db_path) if db_path is not None else CACHE_DB_PATH
        self.durable = durable
        self._conn: sqlite3.Connection | None = None
        self._memory: dict[str, str] = {}
        self._status: StoreStatus | None = None
        self._lock = threading.Lock()

    @property
    def status(self) -> StoreStatus | None:
        return self._status

    @property
    def degraded(self) -> bool:
        return self._status is not None and self._status.degraded

    def connect(self) -> StoreStatus:
        """
        Open the durable store once; later calls return the first result.

        Side Effects:
            - Creates the parent directory and the ``cache`` table
            - On failure logs a StorageDegraded warning and emits telemetry
        """
        with self._lock:
            if self._status is not None:
                return self._status

            if not self.durable:
                return self._degrade(StorageDegraded("durable tier disabled"))

            conn = None
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=DB_CONNECT_TIMEOUT,
                    check_same_thread=False,
                )
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cache (
                        key TEXT PRIMARY KEY,
                        value TEXT,
                        timestamp INTEGER
                    )
                    """
                )
                conn.commit()
            except (OSError, sqlite3.Error) as exc:
                if conn is not None:
                    conn.close()
                return self._degrade(exc)

            self._conn = conn
            self._status = StoreStatus(ok=True, degraded=False)
            logger.info("Email cache storage initialized at %s", self.db_path)
            return self._status

    def get(self, key: str) -> EmailCacheData | None:
        raw = self._read(key)
        if raw is None:
            return None
        try:
            return EmailCacheData.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key[:24], exc)
            counter("cache.durable.decode_error")
            return None

    def set(self, key: str, value: EmailCacheData) -> None:
        self._write(key, value.to_json())

    def clear(self) -> None:
        self._ensure_connected()
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.execute("DELETE FROM cache")
                    self._conn.commit()
                except sqlite3.Error as exc:
                    self._degrade(exc)
            self._memory.clear()

    def delete(self, key: str) -> None:
        self._ensure_connected()
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                    self._conn.commit()
                except sqlite3.Error as exc:
                    self._degrade(exc)
            self._memory.pop(key, None)

    def close(self) -> None:
        """Release the connection. Later calls are served from memory and the
        status reports the store as closed (``ok=False``, memory only)."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            if self._status is None or self._status.ok:
                self._status = StoreStatus(ok=False, degraded=True, reason=CLOSED)
                logger.info("Email cache storage closed at %s", self.db_path)

    def _ensure_connected(self) -> None:
        if self._status is None:
            self.connect()

    def _read(self, key: str) -> str | None:
        self._ensure_connected()
        with self._lock:
            if self._conn is not None:
                try:
                    row = self._conn.execute(
                        "SELECT value FROM cache WHERE key = ?", (key,)
                    ).fetchone()
                    return row[0] if row else None
                except sqlite3.Error as exc:
                    self._degrade(exc)
            return self._memory.get(key)

    def _write(self, key: str, raw: str) -> None:
        self._ensure_connected()
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.execute(
                        "INSERT OR REPLACE INTO cache (key, value, timestamp) VALUES (?, ?, ?)",
                        (key, raw, int(time.time() * 1000)),
                    )
                    self._conn.commit()
                    return
                except sqlite3.Error as exc:
                    self._degrade(exc)
            self._memory[key] = raw

    def _degrade(self, exc: BaseException) -> StoreStatus:
        """Switch to memory-only mode. Caller holds ``self._lock``."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                logger.debug("Ignoring close error on degraded cache connection")
            self._conn = None

        already_degraded = self._status is not None and self._status.degraded
        self._status = StoreStatus(ok=True, degraded=True, reason=str(exc))
        if not already_degraded:
            logger.warning("StorageDegraded: email cache running in memory only (%s)", exc)
            counter("cache.storage_degraded")
            log_event("cache.storage_degraded", path=str(self.db_path), reason=str(exc))
        return self._status
