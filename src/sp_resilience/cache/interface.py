"""
SP Resilience — Cache Interface

Defines the cache entry model and the abstract interface that the memory
and disk tiers implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CacheEntry:
    """
    A cached value with its absolute expiry.

    Attributes:
        key: Cache key
        value: Cached value
        expires_at: Epoch seconds after which the entry is stale (None = never)
        created_at: Epoch seconds when the entry was stored
    """

    key: str
    value: Any
    expires_at: float | None
    created_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "expires_at": self.expires_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        expires_at = data.get("expires_at")
        return cls(
            key=str(data["key"]),
            value=data["value"],
            expires_at=float(expires_at) if expires_at is not None else None,
            created_at=float(data.get("created_at") or 0.0),
        )


@dataclass
class CacheStats:
    """Accumulated cache counters."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hit_ratio, 4),
            "size": self.size,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            **self.extra,
        }


class CacheBackend(ABC):
    """
    Abstract base class for cache tiers.

    Backends store CacheEntry objects and never return an expired entry:
    an expired entry found during a read is removed and treated as absent.
    """

    @abstractmethod
    async def get_entry(self, key: str) -> CacheEntry | None:
        """
        Retrieve an unexpired entry.

        Args:
            key: Cache key

        Returns:
            The entry if present and not expired, None otherwise
        """
        pass

    @abstractmethod
    async def set_entry(self, entry: CacheEntry) -> bool:
        """
        Store an entry, replacing any existing entry for the key.

        Returns:
            True if stored successfully, False otherwise
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if the key was deleted, False if it didn't exist
        """
        pass

    @abstractmethod
    async def clear(self) -> int:
        """
        Remove all entries.

        Returns:
            Number of entries removed
        """
        pass

    @abstractmethod
    async def size(self) -> int:
        """Number of stored entries (expired entries may still be counted)."""
        pass

    async def close(self) -> None:
        """Release backend resources. Called during graceful shutdown."""
        return None
