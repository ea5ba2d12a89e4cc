"""
SP Resilience — Memory Cache Backend Tests

Test suite for the in-memory cache tier.
Tests expiry on read, capacity eviction and all interface methods.
"""

import pytest

from sp_resilience.cache.backends.memory import MemoryCacheBackend
from sp_resilience.cache.interface import CacheEntry
from sp_resilience.resilience.clock import ManualClock


def entry(key: str, value: object, clock: ManualClock, ttl: float | None = 60) -> CacheEntry:
    now = clock.now()
    return CacheEntry(key=key, value=value, expires_at=now + ttl if ttl is not None else None, created_at=now)


class TestMemoryCacheBackend:
    """Test suite for MemoryCacheBackend."""

    @pytest.fixture
    def cache(self, manual_clock: ManualClock) -> MemoryCacheBackend:
        """Create a fresh memory cache instance for each test."""
        return MemoryCacheBackend(max_entries=3, clock=manual_clock)

    async def test_set_and_get(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test basic set and get operations."""
        assert await cache.set_entry(entry("key1", "value1", manual_clock)) is True

        stored = await cache.get_entry("key1")
        assert stored is not None
        assert stored.value == "value1"
        assert await cache.size() == 1

    async def test_get_nonexistent_key(self, cache: MemoryCacheBackend) -> None:
        """Test getting a key that doesn't exist."""
        assert await cache.get_entry("nonexistent") is None

    async def test_expired_entry_removed_on_read(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test expiry is checked before returning a hit."""
        await cache.set_entry(entry("short", "v", manual_clock, ttl=1))

        manual_clock.advance(1)

        assert await cache.get_entry("short") is None
        assert len(cache) == 0

    async def test_no_expiry(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test entries without expires_at never expire."""
        await cache.set_entry(entry("forever", "v", manual_clock, ttl=None))
        manual_clock.advance(10**6)
        assert await cache.get_entry("forever") is not None

    async def test_evicts_oldest_at_capacity(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test the oldest entry is evicted when full."""
        for key in ("a", "b", "c"):
            await cache.set_entry(entry(key, key, manual_clock))

        await cache.set_entry(entry("d", "d", manual_clock))

        assert cache.keys() == ["b", "c", "d"]
        assert cache.evictions == 1

    async def test_expired_entries_purged_before_eviction(
        self, cache: MemoryCacheBackend, manual_clock: ManualClock
    ) -> None:
        """Test room is made from expired entries first."""
        await cache.set_entry(entry("a", "a", manual_clock))
        await cache.set_entry(entry("b", "b", manual_clock, ttl=1))
        await cache.set_entry(entry("c", "c", manual_clock))
        manual_clock.advance(1)

        await cache.set_entry(entry("d", "d", manual_clock))

        assert cache.keys() == ["a", "c", "d"]
        assert cache.evictions == 0

    async def test_overwrite_does_not_evict(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test replacing a key at capacity keeps other entries."""
        for key in ("a", "b", "c"):
            await cache.set_entry(entry(key, key, manual_clock))

        await cache.set_entry(entry("a", "updated", manual_clock))

        assert cache.keys() == ["b", "c", "a"]
        assert cache.evictions == 0
        stored = await cache.get_entry("a")
        assert stored is not None and stored.value == "updated"

    async def test_delete(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test delete operation."""
        await cache.set_entry(entry("key1", "value1", manual_clock))

        assert await cache.delete("key1") is True
        assert await cache.delete("key1") is False
        assert await cache.get_entry("key1") is None

    async def test_clear(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test clearing all entries."""
        for key in ("a", "b"):
            await cache.set_entry(entry(key, key, manual_clock))

        assert await cache.clear() == 2
        assert await cache.size() == 0

    async def test_purge_expired(self, cache: MemoryCacheBackend, manual_clock: ManualClock) -> None:
        """Test bulk removal of expired entries."""
        await cache.set_entry(entry("a", "a", manual_clock, ttl=1))
        await cache.set_entry(entry("b", "b", manual_clock, ttl=5))
        manual_clock.advance(2)

        assert cache.purge_expired() == 1
        assert cache.keys() == ["b"]

    def test_invalid_capacity(self) -> None:
        """Test max_entries validation."""
        with pytest.raises(ValueError):
            MemoryCacheBackend(max_entries=0)
