"""
SP Resilience — Connection Pool Module

Shared transports and request coalescing.
"""

from .connection_pool import BatchEntry, ConnectionPool, PooledAgent

__all__ = ["BatchEntry", "ConnectionPool", "PooledAgent"]
