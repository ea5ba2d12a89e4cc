"""
SP Resilience — Cache Backends

Memory and disk tiers used by CacheManager.
"""

from .disk import DiskCacheBackend
from .memory import MemoryCacheBackend

__all__ = ["DiskCacheBackend", "MemoryCacheBackend"]
