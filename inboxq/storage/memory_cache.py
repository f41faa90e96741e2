"""
Bounded in-memory tier of the email cache, built on ``cachetools``.

Expiry here is advisory: a miss (including an expired entry) sends the
caller to the durable tier, never to "not cached".
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from cachetools import Cache, LRUCache as _LRUStore, TTLCache as _TTLStore

from inboxq.observability.telemetry import counter, log_event

T = TypeVar("T")


class _CountsEvictions:
    """Mixin: report capacity evictions (``popitem``) under the cache's name."""

    telemetry_name = "memory"

    def popitem(self) -> tuple[Any, Any]:
        key, value = super().popitem()  # type: ignore[misc]
        counter(f"cache.{self.telemetry_name}.evicted")
        return key, value


class _CountingLRU(_CountsEvictions, _LRUStore):
    pass


class _CountingTTL(_CountsEvictions, _TTLStore):
    pass


class LRUCache(Generic[T]):
    """Thread-safe LRU cache with fixed capacity and optional TTL.

    Wraps ``cachetools.TTLCache`` when a TTL is set and ``cachetools.LRUCache``
    otherwise; both evict the least recently used entry when full.
    """

    def __init__(
        self,
        name: str,
        max_entries: int = 1000,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Cache name for telemetry (e.g., "email.memory")
            max_entries: Capacity; least recently used entries are evicted beyond it
            ttl_seconds: Time-to-live per entry, None or 0 for no expiry
            clock: Monotonic time source, passed to cachetools as ``timer``
        """
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.name = name
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds or None

        store: Cache
        if self.ttl_seconds:
            store = _CountingTTL(maxsize=max_entries, ttl=self.ttl_seconds, timer=clock)
        else:
            store = _CountingLRU(maxsize=max_entries)
        store.telemetry_name = name
        self._store = store
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            self._expire()
            value = self._store.get(key)
        counter(f"cache.{self.name}.hit" if value is not None else f"cache.{self.name}.miss")
        return value

    def put(self, key: str, value: T) -> None:
        """
        Store value, evicting the least recently used entry when full

        Side Effects:
            - Increments telemetry counters (write, evicted, expired)
        """
        with self._lock:
            self._expire()
            self._store[key] = value
        counter(f"cache.{self.name}.write")

    def invalidate(self, key: str) -> None:
        with self._lock:
            if self._store.pop(key, None) is not None:
                counter(f"cache.{self.name}.invalidate")

    def clear(self) -> None:
        with self._lock:
            count = self._store.currsize
            self._store.clear()
        log_event("cache.cleared", cache=self.name, count=count)

    def _expire(self) -> None:
        """Drop expired entries and count them. Caller holds the lock."""
        if not isinstance(self._store, _TTLStore):
            return
        before = self._store.currsize
        self._store.expire()
        expired = before - self._store.currsize
        if expired:
            counter(f"cache.{self.name}.expired", expired)

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return self._store.currsize
