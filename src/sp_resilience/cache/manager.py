"""
SP Resilience — Cache Manager

Tiered TTL cache used to avoid redundant API calls.

- Memory tier with a capacity bound (oldest entry evicted)
- Optional disk tier restored at startup and read through on memory misses
- Hit/miss statistics accumulated for the lifetime of the manager
"""

import logging
from collections.abc import Callable
from typing import Any

from ..config import CacheConfig
from ..observability import ObservabilityAdapter
from ..resilience.clock import Clock, SystemClock
from ..utils import call_maybe_async
from .backends.disk import DiskCacheBackend
from .backends.memory import MemoryCacheBackend
from .interface import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

_MISSING = object()


class CacheManager:
    """
    TTL cache with statistics, capacity eviction and optional persistence.

    Usage:
        cache = CacheManager(CacheConfig(default_ttl_seconds=300))
        await cache.initialize()
        orders = await cache.with_cache("orders:ATVPDKIKX0DER", fetch_orders)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Clock | None = None,
        observability: ObservabilityAdapter | None = None,
    ):
        """
        Initialize cache manager.

        Args:
            config: Cache configuration (defaults if None)
            clock: Time source for expiry
            observability: Metrics adapter
        """
        self.config = config or CacheConfig()
        self._clock = clock or SystemClock()
        self._obs = observability or ObservabilityAdapter()

        self._memory = MemoryCacheBackend(max_entries=self.config.max_entries, clock=self._clock)
        self._disk: DiskCacheBackend | None = None
        if self.config.persistent:
            self._disk = DiskCacheBackend(self.config.storage_directory, clock=self._clock)

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

        logger.debug(
            "Cache manager initialized",
            extra={
                "default_ttl_seconds": self.config.default_ttl_seconds,
                "max_entries": self.config.max_entries,
                "persistent": self.config.persistent,
                "storage_directory": str(self.config.storage_directory) if self.config.persistent else None,
            },
        )

    @property
    def persistent(self) -> bool:
        return self._disk is not None

    async def initialize(self) -> int:
        """
        Restore persisted entries into memory.

        Entries that fail to parse or have already expired are discarded.

        Returns:
            Number of entries restored
        """
        if self._disk is None:
            return 0

        entries = await self._disk.load_entries()
        for entry in entries:
            await self._memory.set_entry(entry)

        logger.info(
            f"Restored {len(entries)} cache entries from {self._disk.directory}",
            extra={"restored": len(entries), "directory": str(self._disk.directory)},
        )
        return len(entries)

    async def get(self, key: str) -> Any | None:
        """
        Get a value from the cache.

        Returns:
            Cached value, or None on a miss
        """
        value = await self._lookup(key)
        return None if value is _MISSING else value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to cache (must be JSON serializable to be persisted)
            ttl_seconds: Time-to-live (None = default TTL, 0 = no expiry)
        """
        if ttl_seconds is None:
            ttl_seconds = self.config.default_ttl_seconds
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")

        now = self._clock.now()
        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=now + ttl_seconds if ttl_seconds > 0 else None,
            created_at=now,
        )

        evictions_before = self._memory.evictions
        await self._memory.set_entry(entry)
        if self._memory.evictions > evictions_before:
            self._obs.increment("cache.evictions", value=self._memory.evictions - evictions_before)

        if self._disk is not None:
            await self._disk.set_entry(entry)

        self._sets += 1
        logger.debug("Cache set", extra={"key": key, "ttl_seconds": ttl_seconds})

    async def delete(self, key: str) -> bool:
        """
        Delete a key from every tier.

        Returns:
            True if the key was present in memory
        """
        deleted = await self._memory.delete(key)
        if self._disk is not None:
            deleted = await self._disk.delete(key) or deleted

        if deleted:
            self._deletes += 1
        logger.debug("Cache delete", extra={"key": key, "deleted": deleted})
        return deleted

    async def clear(self) -> None:
        """Remove all entries from every tier. Statistics are kept."""
        removed = await self._memory.clear()
        if self._disk is not None:
            await self._disk.clear()
        logger.info(f"Cleared {removed} entries from memory cache")

    async def purge_expired(self) -> int:
        """Drop expired entries from memory. Returns the number removed."""
        return self._memory.purge_expired()

    async def with_cache(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl_seconds: int | None = None,
    ) -> Any:
        """
        Return the cached value or compute, store and return it.

        compute_fn runs at most once per call. Concurrent misses on the same
        key each run compute_fn; compose with ConnectionPool.batch_request
        for single-flight behaviour.

        Args:
            key: Cache key
            compute_fn: Sync or async callable producing the value
            ttl_seconds: Time-to-live for the computed value
        """
        cached = await self._lookup(key)
        if cached is not _MISSING:
            return cached

        result = await call_maybe_async(compute_fn)
        await self.set(key, result, ttl_seconds)
        return result

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._memory),
            sets=self._sets,
            deletes=self._deletes,
            evictions=self._memory.evictions,
            extra={"max_entries": self.config.max_entries, "persistent": self.persistent},
        )

    async def close(self) -> None:
        """Close cache tiers and release resources."""
        await self._memory.close()
        if self._disk is not None:
            await self._disk.close()
        logger.debug("Cache manager closed")

    async def _lookup(self, key: str) -> Any:
        entry = await self._memory.get_entry(key)

        if entry is None and self._disk is not None:
            entry = await self._disk.get_entry(key)
            if entry is not None:
                # Promote to memory, keeping the original expiry
                await self._memory.set_entry(entry)
                logger.debug("Cache hit (persistent)", extra={"key": key})

        if entry is None:
            self._misses += 1
            self._obs.increment("cache.misses")
            logger.debug("Cache miss", extra={"key": key})
            return _MISSING

        self._hits += 1
        self._obs.increment("cache.hits")
        return entry.value
