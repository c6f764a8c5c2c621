"""
BastionCache - Response cache store and caching stage.

Provides:
- CacheBackend contract and CacheEntry record
- MemoryBackend (LRU + TTL, thread-safe)
- HashKeyBuilder / ResponseKeyBuilder (SHA-256 fingerprints)
- ResponseCacheStage (GET-only HTTP response caching)
"""

from .backends import MemoryBackend
from .core import CacheBackend, CacheEntry, CacheStats
from .key_builder import HashKeyBuilder, ResponseKeyBuilder
from .middleware import (
    ResponseCacheStage,
    deserialize_response,
    is_cacheable,
    serialize_response,
)

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "MemoryBackend",
    "HashKeyBuilder",
    "ResponseKeyBuilder",
    "ResponseCacheStage",
    "serialize_response",
    "deserialize_response",
    "is_cacheable",
]
