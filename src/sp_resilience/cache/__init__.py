"""
SP Resilience — Cache Module

TTL caching for API results with an in-memory tier and optional disk
persistence.

Usage:
    from sp_resilience.cache import CacheManager

    cache = CacheManager()
    await cache.set("key", "value", ttl_seconds=60)
    value = await cache.get("key")
"""

from .backends import DiskCacheBackend, MemoryCacheBackend
from .interface import CacheBackend, CacheEntry, CacheStats
from .manager import CacheManager

__all__ = [
    # Manager
    "CacheManager",
    # Model
    "CacheEntry",
    "CacheStats",
    # Tiers
    "CacheBackend",
    "MemoryCacheBackend",
    "DiskCacheBackend",
]
