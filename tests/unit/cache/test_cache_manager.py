"""
SP Resilience — Cache Manager Tests

Tests TTL handling, statistics, with_cache semantics and disk persistence.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from sp_resilience.cache import CacheManager, DiskCacheBackend
from sp_resilience.config import CacheConfig
from sp_resilience.observability import ObservabilityAdapter
from sp_resilience.resilience.clock import ManualClock


class TestCacheManager:
    """Test suite for the in-memory CacheManager."""

    @pytest.fixture
    def cache(self, manual_clock: ManualClock, observability: ObservabilityAdapter) -> CacheManager:
        """Cache with a 60 second default TTL and room for 3 entries."""
        return CacheManager(
            CacheConfig(default_ttl_seconds=60, max_entries=3),
            clock=manual_clock,
            observability=observability,
        )

    async def test_get_records_hits_and_misses(self, cache: CacheManager) -> None:
        """Test stats after a miss and a hit."""
        assert await cache.get("orders") is None
        await cache.set("orders", ["902-3159896-1390916"])
        assert await cache.get("orders") == ["902-3159896-1390916"]

        stats = cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.hit_ratio == 0.5
        assert stats.size == 1
        assert stats.sets == 1

    async def test_hit_ratio_with_no_lookups(self, cache: CacheManager) -> None:
        """Test hit ratio is zero before any lookup."""
        assert cache.get_stats().hit_ratio == 0.0

    async def test_default_ttl_applies(self, cache: CacheManager, manual_clock: ManualClock) -> None:
        """Test entries expire after the default TTL."""
        await cache.set("k", "v")

        manual_clock.advance(59)
        assert await cache.get("k") == "v"

        manual_clock.advance(1)
        assert await cache.get("k") is None

    async def test_explicit_ttl(self, cache: CacheManager, manual_clock: ManualClock) -> None:
        """Test a per-call TTL overrides the default."""
        await cache.set("k", "v", ttl_seconds=5)
        manual_clock.advance(5)
        assert await cache.get("k") is None

    async def test_zero_ttl_never_expires(self, cache: CacheManager, manual_clock: ManualClock) -> None:
        """Test ttl_seconds=0 stores without expiry."""
        await cache.set("k", "v", ttl_seconds=0)
        manual_clock.advance(86400)
        assert await cache.get("k") == "v"

    async def test_negative_ttl_rejected(self, cache: CacheManager) -> None:
        """Test negative TTLs are invalid."""
        with pytest.raises(ValueError):
            await cache.set("k", "v", ttl_seconds=-1)

    async def test_capacity_evicts_oldest(self, cache: CacheManager, observability: ObservabilityAdapter) -> None:
        """Test max_entries bounds memory."""
        for key in ("a", "b", "c", "d"):
            await cache.set(key, key)

        assert await cache.get("a") is None
        assert await cache.get("d") == "d"
        stats = cache.get_stats()
        assert stats.size == 3
        assert stats.evictions == 1
        assert observability.get_metric("cache.evictions") == 1

    async def test_delete_and_clear(self, cache: CacheManager) -> None:
        """Test explicit invalidation."""
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        await cache.clear()

        assert await cache.get("b") is None
        assert cache.get_stats().deletes == 1

    async def test_clear_keeps_counters(self, cache: CacheManager) -> None:
        """Test statistics survive clear()."""
        await cache.set("a", 1)
        await cache.get("a")
        await cache.clear()

        assert cache.get_stats().hits == 1

    async def test_purge_expired(self, cache: CacheManager, manual_clock: ManualClock) -> None:
        """Test bulk expiry sweep."""
        await cache.set("short", 1, ttl_seconds=1)
        await cache.set("long", 2, ttl_seconds=100)
        manual_clock.advance(2)

        assert await cache.purge_expired() == 1
        assert cache.get_stats().size == 1


class TestWithCache:
    """Test suite for CacheManager.with_cache."""

    @pytest.fixture
    def cache(self, manual_clock: ManualClock) -> CacheManager:
        return CacheManager(CacheConfig(default_ttl_seconds=60), clock=manual_clock)

    async def test_computes_once_within_ttl(self, cache: CacheManager, manual_clock: ManualClock) -> None:
        """Test two calls inside the TTL compute once and a call after expiry recomputes."""
        compute = AsyncMock(side_effect=["first", "second"])

        assert await cache.with_cache("catalog:B00EXAMPLE", compute, ttl_seconds=10) == "first"
        assert await cache.with_cache("catalog:B00EXAMPLE", compute, ttl_seconds=10) == "first"
        assert compute.await_count == 1

        manual_clock.advance(10)

        assert await cache.with_cache("catalog:B00EXAMPLE", compute, ttl_seconds=10) == "second"
        assert compute.await_count == 2

    async def test_sync_compute_fn(self, cache: CacheManager) -> None:
        """Test plain functions are accepted."""
        compute = MagicMock(return_value=7)
        assert await cache.with_cache("k", compute) == 7
        assert await cache.with_cache("k", compute) == 7
        compute.assert_called_once()

    async def test_cached_none_is_a_hit(self, cache: CacheManager) -> None:
        """Test a stored None does not trigger recomputation."""
        compute = AsyncMock(return_value=None)

        await cache.with_cache("empty", compute)
        await cache.with_cache("empty", compute)

        assert compute.await_count == 1
        assert cache.get_stats().hits == 1

    async def test_compute_failure_not_cached(self, cache: CacheManager) -> None:
        """Test errors propagate and nothing is stored."""
        compute = AsyncMock(side_effect=[RuntimeError("upstream"), "ok"])

        with pytest.raises(RuntimeError):
            await cache.with_cache("k", compute)

        assert await cache.with_cache("k", compute) == "ok"


class TestPersistentCache:
    """Test suite for the disk-backed tier."""

    def make_cache(self, directory: Path, clock: ManualClock) -> CacheManager:
        return CacheManager(
            CacheConfig(default_ttl_seconds=60, persistent=True, storage_directory=directory),
            clock=clock,
        )

    async def test_restore_at_startup(self, temp_cache_dir: Path, manual_clock: ManualClock) -> None:
        """Test a new manager restores entries written by a previous one."""
        first = self.make_cache(temp_cache_dir, manual_clock)
        await first.set("inventory:SKU-1", {"fulfillable": 12})
        await first.close()

        second = self.make_cache(temp_cache_dir, manual_clock)
        assert await second.initialize() == 1
        assert await second.get("inventory:SKU-1") == {"fulfillable": 12}

    async def test_expired_and_corrupt_files_discarded(
        self, temp_cache_dir: Path, manual_clock: ManualClock
    ) -> None:
        """Test restore silently drops unusable files."""
        first = self.make_cache(temp_cache_dir, manual_clock)
        await first.set("short", 1, ttl_seconds=1)
        await first.set("long", 2, ttl_seconds=100)
        (temp_cache_dir / ("f" * 64 + ".cache")).write_text("garbage")

        manual_clock.advance(2)
        second = self.make_cache(temp_cache_dir, manual_clock)

        assert await second.initialize() == 1
        remaining = [p.name for p in temp_cache_dir.iterdir()]
        assert remaining == [DiskCacheBackend(temp_cache_dir).path_for("long").name]

    async def test_read_through_promotes_to_memory(self, temp_cache_dir: Path, manual_clock: ManualClock) -> None:
        """Test a memory miss is served from disk."""
        writer = self.make_cache(temp_cache_dir, manual_clock)
        await writer.set("k", "v")

        reader = self.make_cache(temp_cache_dir, manual_clock)
        assert await reader.get("k") == "v"
        assert reader.get_stats().hits == 1
        assert reader.get_stats().size == 1

    async def test_delete_removes_file(self, temp_cache_dir: Path, manual_clock: ManualClock) -> None:
        """Test deletes reach the disk tier."""
        cache = self.make_cache(temp_cache_dir, manual_clock)
        await cache.set("k", "v")
        await cache.delete("k")

        assert list(temp_cache_dir.iterdir()) == []

    async def test_non_persistent_initialize(self, manual_clock: ManualClock) -> None:
        """Test initialize is a no-op without persistence."""
        cache = CacheManager(clock=manual_clock)
        assert cache.persistent is False
        assert await cache.initialize() == 0
