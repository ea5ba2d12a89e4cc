"""
SP Resilience — Memory Cache Backend

In-memory entry table with TTL support and a capacity bound.
Safe for the single event loop the resilience layer runs on; every
operation completes without awaiting, so no lock is needed.
"""

import logging
from collections import OrderedDict

from ...resilience.clock import Clock, SystemClock
from ..interface import CacheBackend, CacheEntry

logger = logging.getLogger(__name__)


class MemoryCacheBackend(CacheBackend):
    """
    In-memory cache tier.

    Features:
    - Expiry checked on every read
    - Capacity bound: expired entries are purged first, then the oldest
      entry is evicted
    - O(1) get/set/delete operations
    """

    def __init__(self, max_entries: int = 1000, clock: Clock | None = None):
        """
        Initialize memory cache backend.

        Args:
            max_entries: Maximum number of entries before eviction
            clock: Time source for expiry checks
        """
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self.max_entries = max_entries
        self._clock = clock or SystemClock()

        # Insertion ordered: first item is the oldest entry
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

        self.evictions = 0

    async def get_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock.now()):
            del self._entries[key]
            logger.debug(f"Expired key removed from memory cache: {key}")
            return None

        return entry

    async def set_entry(self, entry: CacheEntry) -> bool:
        if entry.key in self._entries:
            del self._entries[entry.key]
        elif len(self._entries) >= self.max_entries:
            self._make_room()

        self._entries[entry.key] = entry
        return True

    async def delete(self, key: str) -> bool:
        if key in self._entries:
            del self._entries[key]
            return True
        return False

    async def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    async def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock.now()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def _make_room(self) -> None:
        if self.purge_expired() and len(self._entries) < self.max_entries:
            return

        evicted_key, _ = self._entries.popitem(last=False)
        self.evictions += 1
        logger.debug(f"Evicted key from memory cache: {evicted_key}")
