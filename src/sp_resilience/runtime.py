"""
SP Resilience — Runtime

Composes the cache, connection pool and recovery manager owned by one API
client. Every component shares the runtime's clock and observability
adapter; nothing here is process-global.

Usage:
    async with ResilienceRuntime(config) as runtime:
        async with runtime.pool.create_client(base_url=endpoint) as client:
            orders = await runtime.call(
                lambda: fetch_orders(client),
                cache_key="orders:ATVPDKIKX0DER",
                batch_key="GET /orders/v0/orders",
            )
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from .cache import CacheManager
from .config import ResilienceConfig, load_config
from .observability import ObservabilityAdapter, configure_logging
from .pool import ConnectionPool
from .resilience import Clock, SystemClock, create_default_error_recovery_manager
from .resilience.strategies import FallbackFn
from .utils import call_maybe_async, callable_name

logger = logging.getLogger(__name__)


class ResilienceRuntime:
    """
    Resilience layer for one API client.

    call() wraps an operation as recovery(cache(batch(tracked operation))):
    the pool counts every real request, concurrent identical requests are
    coalesced, successful results are cached, and failures are translated
    and recovered by the configured strategies.
    """

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        clock: Clock | None = None,
        observability: ObservabilityAdapter | None = None,
        fallback_fn: FallbackFn | None = None,
    ):
        self.config = config or ResilienceConfig()
        self.clock = clock or SystemClock()
        self.observability = observability or ObservabilityAdapter(
            enable_metrics=self.config.observability.enable_metrics,
            enable_tracing=self.config.observability.enable_tracing,
            max_histogram_samples=self.config.observability.max_histogram_samples,
        )

        self.cache = CacheManager(self.config.cache, clock=self.clock, observability=self.observability)
        self.pool = ConnectionPool(self.config.connection_pool, clock=self.clock, observability=self.observability)
        self.recovery = create_default_error_recovery_manager(
            self.config.recovery,
            fallback_fn=fallback_fn,
            clock=self.clock,
            observability=self.observability,
        )
        self._started = False

    @classmethod
    def from_env(
        cls,
        env_file: str | Path | None = None,
        clock: Clock | None = None,
        fallback_fn: FallbackFn | None = None,
    ) -> "ResilienceRuntime":
        """
        Build a runtime from environment variables and an optional .env file.

        Also configures package logging from the loaded settings.
        """
        config = load_config(env_file=env_file)
        configure_logging(config.log_level, json_format=config.observability.json_logs)
        return cls(config, clock=clock, fallback_fn=fallback_fn)

    async def start(self) -> None:
        """Restore persisted cache entries. Safe to call more than once."""
        if self._started:
            return
        restored = await self.cache.initialize()
        self._started = True
        self.observability.event(
            "runtime.started",
            {
                "environment": self.config.environment,
                "restored_cache_entries": restored,
                "strategies": [type(s).__name__ for s in self.recovery.strategies],
            },
        )

    async def call(
        self,
        operation: Callable[[], Any],
        *,
        cache_key: str | None = None,
        ttl_seconds: int | None = None,
        batch_key: str | None = None,
        retry_count: int = 0,
    ) -> Any:
        """
        Run an operation through the resilience layer.

        Args:
            operation: Sync or async callable performing the request
            cache_key: Cache successful results under this key
            ttl_seconds: TTL for the cached result (None = default)
            batch_key: Coalesce concurrent calls sharing this key
            retry_count: Retries already performed by the caller

        Returns:
            Operation result (possibly cached, coalesced or recovered)

        Raises:
            DomainError: Failure no strategy could recover from
        """

        async def tracked() -> Any:
            self.pool.track_request()
            try:
                return await call_maybe_async(operation)
            except (httpx.TimeoutException, TimeoutError):
                self.pool.track_timeout()
                raise
            except Exception:
                self.pool.track_error()
                raise

        async def batched() -> Any:
            if batch_key is None:
                return await tracked()
            return await self.pool.batch_request(batch_key, tracked)

        async def cached() -> Any:
            if cache_key is None:
                return await batched()
            return await self.cache.with_cache(cache_key, batched, ttl_seconds)

        with self.observability.trace("resilience.call", tags={"operation": callable_name(operation)}):
            return await self.recovery.execute_with_recovery(cached, retry_count=retry_count)

    def get_stats(self) -> dict[str, Any]:
        """Combined cache, pool and metrics statistics."""
        return {
            "cache": self.cache.get_stats().to_dict(),
            "pool": self.pool.get_stats(),
            "metrics": self.observability.snapshot(),
        }

    async def aclose(self) -> None:
        """Close pool transports and the cache."""
        await self.pool.aclose()
        await self.cache.close()
        logger.info("Resilience runtime closed")

    async def __aenter__(self) -> "ResilienceRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
