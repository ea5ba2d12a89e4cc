"""
SP Resilience — Connection Pool

Shared HTTP transports plus an in-flight request coalescing map.

One pool is built per API client. Its two agents (plain and TLS) are
created once from ConnectionPoolConfig and reused by every client created
through create_client(), so connection setup is amortized across calls.
batch_request() collapses concurrent calls that share a key onto a single
underlying task.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import ConnectionPoolConfig
from ..observability import ObservabilityAdapter
from ..resilience.clock import Clock, SystemClock
from ..utils import call_maybe_async

logger = logging.getLogger(__name__)


class _SharedTransport(httpx.AsyncBaseTransport):
    """Client-facing view of a pooled transport; closing a client leaves it open."""

    def __init__(self, transport: httpx.AsyncHTTPTransport):
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        # Owned by the pool
        pass


@dataclass
class PooledAgent:
    """Long-lived transport for one URL scheme."""

    scheme: str
    max_sockets: int
    max_free_sockets: int
    keep_alive: bool
    keep_alive_timeout_ms: int
    limits: httpx.Limits = field(init=False)
    transport: httpx.AsyncHTTPTransport = field(init=False)

    def __post_init__(self) -> None:
        self.limits = httpx.Limits(
            max_connections=self.max_sockets,
            max_keepalive_connections=self.max_free_sockets if self.keep_alive else 0,
            keepalive_expiry=self.keep_alive_timeout_ms / 1000 if self.keep_alive else 0,
        )
        self.transport = httpx.AsyncHTTPTransport(limits=self.limits)

    def shared(self) -> httpx.AsyncBaseTransport:
        return _SharedTransport(self.transport)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheme": self.scheme,
            "max_sockets": self.max_sockets,
            "max_free_sockets": self.max_free_sockets,
            "keep_alive": self.keep_alive,
            "keep_alive_timeout_ms": self.keep_alive_timeout_ms,
        }


@dataclass
class BatchEntry:
    """Pending result shared by every caller of one batch key."""

    key: str
    future: asyncio.Task[Any]
    timestamp: float


class ConnectionPool:
    """
    Connection pool manager for outbound API requests.

    Features:
    - HTTP and HTTPS agents built once from configuration
    - Request, error and timeout counters
    - Request coalescing keyed by caller-chosen batch keys
    """

    def __init__(
        self,
        config: ConnectionPoolConfig | None = None,
        clock: Clock | None = None,
        observability: ObservabilityAdapter | None = None,
    ):
        self.config = config or ConnectionPoolConfig()
        self._clock = clock or SystemClock()
        self._obs = observability or ObservabilityAdapter()

        self._http_agent = self._build_agent("http")
        self._https_agent = self._build_agent("https")

        self._batches: dict[str, BatchEntry] = {}

        self._total_requests = 0
        self._errors = 0
        self._timeouts = 0
        self._coalesced_requests = 0
        self._closed = False

        logger.debug(
            "Connection pool initialized",
            extra={
                "max_sockets": self.config.max_sockets,
                "max_free_sockets": self.config.max_free_sockets,
                "timeout_ms": self.config.timeout_ms,
                "keep_alive": self.config.keep_alive,
                "keep_alive_timeout_ms": self.config.keep_alive_timeout_ms,
            },
        )

    def _build_agent(self, scheme: str) -> PooledAgent:
        return PooledAgent(
            scheme=scheme,
            max_sockets=self.config.max_sockets,
            max_free_sockets=self.config.max_free_sockets,
            keep_alive=self.config.keep_alive,
            keep_alive_timeout_ms=self.config.keep_alive_timeout_ms,
        )

    def get_http_agent(self) -> PooledAgent:
        return self._http_agent

    def get_https_agent(self) -> PooledAgent:
        return self._https_agent

    def create_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """
        Create an httpx client routed through the pooled agents.

        Keyword arguments are passed to httpx.AsyncClient; the configured
        timeout applies unless one is given. Closing the returned client
        does not close the pool's transports.
        """
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        kwargs.setdefault("timeout", httpx.Timeout(self.config.timeout_ms / 1000))
        return httpx.AsyncClient(
            mounts={
                "http://": self._http_agent.shared(),
                "https://": self._https_agent.shared(),
            },
            **kwargs,
        )

    def track_request(self) -> None:
        """Count one outbound request."""
        self._total_requests += 1
        self._obs.increment("pool.requests")

    def track_error(self) -> None:
        """Count one failed request."""
        self._errors += 1
        self._obs.increment("pool.errors")

    def track_timeout(self) -> None:
        """Count one timed out request."""
        self._timeouts += 1
        self._obs.increment("pool.timeouts")

    def get_stats(self) -> dict[str, Any]:
        """
        Get connection pool statistics.

        Returns:
            Dictionary with request counters and batch map size
        """
        return {
            "total_requests": self._total_requests,
            "errors": self._errors,
            "timeouts": self._timeouts,
            "coalesced_requests": self._coalesced_requests,
            "in_flight_batches": len(self._batches),
            "agents": [self._http_agent.to_dict(), self._https_agent.to_dict()],
        }

    async def batch_request(self, key: str, fn: Callable[[], Any]) -> Any:
        """
        Run fn once for all concurrent callers sharing key.

        While a call for key is in flight, later callers await the same
        task instead of invoking their own fn. The record is dropped as
        soon as the task settles, so the next call starts a fresh request.

        Args:
            key: Coalescing key (e.g. method + path + query)
            fn: Sync or async callable performing the request

        Returns:
            Result of the shared call; failures propagate to every caller
        """
        entry = self._batches.get(key)
        if entry is not None:
            self._coalesced_requests += 1
            self._obs.increment("pool.coalesced_requests")
            logger.debug(f"Coalescing request for batch key: {key}")
            # Shielded so one caller's cancellation does not cancel the others
            return await asyncio.shield(entry.future)

        task = asyncio.create_task(call_maybe_async(fn))
        entry = BatchEntry(key=key, future=task, timestamp=self._clock.now() * 1000)
        self._batches[key] = entry
        task.add_done_callback(lambda done: self._settle(entry, done))

        if len(self._batches) > self.config.batch_sweep_threshold:
            self.cleanup_batches(self.config.batch_max_age_ms)

        self._obs.gauge("pool.in_flight_batches", len(self._batches))
        return await asyncio.shield(task)

    def cleanup_batches(self, max_age_ms: float) -> int:
        """
        Remove batch records older than max_age_ms, settled or not.

        Removed tasks keep running for the callers already awaiting them;
        only new callers stop joining them.

        Returns:
            Number of records removed
        """
        cutoff = self._clock.now() * 1000 - max_age_ms
        stale = [key for key, entry in self._batches.items() if entry.timestamp < cutoff]
        for key in stale:
            del self._batches[key]

        if stale:
            logger.debug(f"Swept {len(stale)} stale batch records", extra={"max_age_ms": max_age_ms})
        return len(stale)

    async def aclose(self) -> None:
        """Close both transports and drop batch records."""
        if self._closed:
            return
        self._closed = True
        self._batches.clear()
        await self._http_agent.transport.aclose()
        await self._https_agent.transport.aclose()
        logger.debug("Connection pool closed")

    def _settle(self, entry: BatchEntry, task: asyncio.Task) -> None:
        # Mark the outcome retrieved; every waiter may have been cancelled
        if not task.cancelled():
            task.exception()

        # A sweep may have replaced the record with a newer call
        if self._batches.get(entry.key) is entry:
            del self._batches[entry.key]
