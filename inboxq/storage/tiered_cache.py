"""Process-wide email cache: memory tier in front of the persistent store.

One ``TieredCache`` is built at application startup (``create_email_cache``)
and handed to request handlers; nothing looks it up through a global. The
cache knows nothing about owners: callers build keys with
``inboxq.storage.keys`` so each key carries the owning identity.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from inboxq.config import CACHE_MEMORY_MAX_ENTRIES, CACHE_MEMORY_TTL_SECONDS
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, log_event
from inboxq.storage.memory_cache import LRUCache
from inboxq.storage.models import EmailCacheData
from inboxq.storage.persistent_store import PersistentStore, StoreStatus

logger = get_logger(__name__)


class TieredCache:
    """
    Read-through cache with promotion.

    - ``get``: memory hit returns without touching the durable tier; a memory
      miss reads the durable tier and backfills memory on a hit.
    - ``set``: memory first, then durable, both before returning.
    - ``delete``: drops one key from both tiers.
    - ``clear``: empties both tiers.
    """

    def __init__(self, store: PersistentStore, memory: LRUCache[EmailCacheData]):
        self.store = store
        self.memory = memory
        self._status: StoreStatus | None = None
        self._init_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._status is not None

    @property
    def status(self) -> StoreStatus | None:
        return self.store.status or self._status

    def initialize(self) -> StoreStatus:
        """Connect the durable tier. Safe to call repeatedly; later calls are no-ops."""
        with self._init_lock:
            if self._status is None:
                self._status = self.store.connect()
                log_event("cache.initialized", mode=self._status.mode)
            return self._status

    def get(self, key: str) -> EmailCacheData | None:
        if not self.initialized:
            self.initialize()

        value = self.memory.get(key)
        if value is not None:
            return value

        value = self.store.get(key)
        if value is not None:
            self.memory.put(key, value)
            counter("cache.email.backfill")
        return value

    def set(self, key: str, value: EmailCacheData) -> None:
        if not self.initialized:
            self.initialize()

        self.memory.put(key, value)
        self.store.set(key, value)

    def delete(self, key: str) -> None:
        if not self.initialized:
            self.initialize()

        self.memory.invalidate(key)
        self.store.delete(key)

    def clear(self) -> None:
        if not self.initialized:
            self.initialize()

        self.memory.clear()
        self.store.clear()
        logger.info("Email cache cleared")

    def stats(self) -> dict[str, Any]:
        status = self.status
        return {
            "initialized": self.initialized,
            "mode": status.mode if status else None,
            "degraded_reason": status.reason if status else None,
            "memory_entries": len(self.memory),
            "memory_capacity": self.memory.max_entries,
        }


def create_email_cache(
    db_path: Path | str | None = None,
    durable: bool = True,
    max_entries: int = CACHE_MEMORY_MAX_ENTRIES,
    ttl_seconds: float | None = CACHE_MEMORY_TTL_SECONDS,
) -> TieredCache:
    """Build the process-wide email cache (not yet initialized)."""
    return TieredCache(
        store=PersistentStore(db_path=db_path, durable=durable),
        memory=LRUCache(name="email.memory", max_entries=max_entries, ttl_seconds=ttl_seconds),
    )
