"""
BastionCache - In-memory backend.

LRU ordering via OrderedDict; TTL checked lazily on read. The critical
section is guarded by a ``threading.Lock`` with no ``await`` inside, so a
read-check-write is atomic across asyncio tasks and across threads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Optional

from ..core import CacheBackend, CacheEntry, CacheStats, Clock

logger = logging.getLogger("bastion.cache")


class MemoryBackend(CacheBackend):
    """
    In-memory cache backend.

    Args:
        max_size: Maximum number of entries (least recently used evicted first)
        clock: Monotonic time source in seconds (injectable for tests)
    """

    __slots__ = ("_max_size", "_clock", "_store", "_lock", "stats")

    def __init__(self, max_size: int = 1000, clock: Optional[Clock] = None):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._clock = clock or time.monotonic
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    @property
    def name(self) -> str:
        return "memory:lru"

    async def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._store[key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return None
            self._store.move_to_end(key)
            self.stats.hits += 1
            return entry

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        entry = CacheEntry(key=key, value=value, ttl=ttl, created_at=self._clock())
        with self._lock:
            self._store.pop(key, None)
            while len(self._store) >= self._max_size:
                evicted, _ = self._store.popitem(last=False)
                self.stats.evictions += 1
                logger.debug("Evicted cache key %s", evicted)
            self._store[key] = entry
            self.stats.sets += 1

    async def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._store.pop(key, None) is not None
            if existed:
                self.stats.deletes += 1
            return existed

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``."""
        with self._lock:
            doomed = [key for key in self._store if key.startswith(prefix)]
            for key in doomed:
                del self._store[key]
            self.stats.deletes += len(doomed)
            return len(doomed)

    async def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    def __len__(self) -> int:
        return len(self._store)


__all__ = ["MemoryBackend"]
