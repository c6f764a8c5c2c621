"""
BastionCache - Core types and the backend contract.

Defines the entry record, hit/miss statistics, and the abstract backend that
the response cache and the cached access provider share.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

Clock = Callable[[], float]


# ============================================================================
# Cache Entry
# ============================================================================

@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    Single cache entry.

    Entries are never mutated: a write replaces the entry, expiry removes it.
    """
    key: str
    value: Any
    ttl: Optional[float] = None
    created_at: float = field(default_factory=time.monotonic)

    @property
    def expires_at(self) -> Optional[float]:
        if self.ttl is None:
            return None
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and now >= expires_at


# ============================================================================
# Statistics
# ============================================================================

@dataclass
class CacheStats:
    """Running counters for a backend."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_ratio": round(self.hit_ratio, 4),
        }


# ============================================================================
# Backend contract
# ============================================================================

class CacheBackend(ABC):
    """
    Abstract cache backend - defines the storage contract.

    Backends are responsible for their own eviction and TTL enforcement.
    A read of an expired key behaves exactly like a read of a missing key.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Retrieve entry by key. None if missing or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, replacing any existing entry."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete entry by key. True if the key existed."""
        ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns the number removed."""
        ...

    @abstractmethod
    async def clear(self) -> int:
        """Remove all entries. Returns the number removed."""
        ...

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    @property
    def name(self) -> str:
        return self.__class__.__name__


__all__ = ["Clock", "CacheEntry", "CacheStats", "CacheBackend"]
