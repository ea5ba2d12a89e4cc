"""
SP Resilience — Connection Pool Tests

Tests pooled agents, request counters and batch_request coalescing.
"""

import asyncio
import gc
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest

from sp_resilience.config import ConnectionPoolConfig
from sp_resilience.observability import ObservabilityAdapter
from sp_resilience.pool import ConnectionPool
from sp_resilience.resilience.clock import ManualClock


@pytest.fixture
async def pool(manual_clock: ManualClock, observability: ObservabilityAdapter) -> AsyncGenerator[ConnectionPool, None]:
    """Connection pool with default configuration on a virtual clock."""
    pool = ConnectionPool(clock=manual_clock, observability=observability)
    yield pool
    await pool.aclose()


class TestPooledAgents:
    """Test agent construction from configuration."""

    async def test_agents_built_once(self, pool: ConnectionPool) -> None:
        """Test the same agents are returned on every call."""
        assert pool.get_http_agent() is pool.get_http_agent()
        assert pool.get_https_agent() is pool.get_https_agent()
        assert pool.get_http_agent().scheme == "http"
        assert pool.get_https_agent().scheme == "https"

    async def test_agent_limits_from_config(self) -> None:
        """Test socket limits and keep-alive reach httpx.Limits."""
        pool = ConnectionPool(
            ConnectionPoolConfig(max_sockets=20, max_free_sockets=4, keep_alive_timeout_ms=15000)
        )
        agent = pool.get_https_agent()

        assert agent.max_sockets == 20
        assert agent.limits.max_connections == 20
        assert agent.limits.max_keepalive_connections == 4
        assert agent.limits.keepalive_expiry == 15.0
        await pool.aclose()

    async def test_keep_alive_disabled(self) -> None:
        """Test no idle connections are kept when keep-alive is off."""
        pool = ConnectionPool(ConnectionPoolConfig(keep_alive=False))
        assert pool.get_http_agent().limits.max_keepalive_connections == 0
        await pool.aclose()

    async def test_create_client_uses_pool_timeout(self, pool: ConnectionPool) -> None:
        """Test clients inherit the configured timeout."""
        async with pool.create_client(base_url="https://sellingpartnerapi-na.amazon.com") as client:
            assert client.timeout == httpx.Timeout(60.0)

    async def test_closing_client_keeps_transports(self, pool: ConnectionPool) -> None:
        """Test a second client can be created after the first is closed."""
        async with pool.create_client():
            pass
        async with pool.create_client() as client:
            assert isinstance(client, httpx.AsyncClient)

    async def test_client_routes_through_agent(self) -> None:
        """Test requests made by a pool client reach the pooled transport."""
        pool = ConnectionPool()
        handled: list[str] = []

        async def handle(request: httpx.Request) -> httpx.Response:
            handled.append(str(request.url))
            return httpx.Response(200, json={"payload": []})

        pool.get_https_agent().transport.handle_async_request = handle  # type: ignore[method-assign]

        async with pool.create_client() as client:
            response = await client.get("https://sellingpartnerapi-na.amazon.com/orders/v0/orders")

        assert response.json() == {"payload": []}
        assert handled == ["https://sellingpartnerapi-na.amazon.com/orders/v0/orders"]
        await pool.aclose()

    async def test_create_client_after_close(self) -> None:
        """Test a closed pool refuses new clients."""
        pool = ConnectionPool()
        await pool.aclose()
        with pytest.raises(RuntimeError):
            pool.create_client()


class TestRequestTracking:
    """Test request counters."""

    async def test_counters(self, pool: ConnectionPool, observability: ObservabilityAdapter) -> None:
        """Test track_* methods update stats and metrics."""
        pool.track_request()
        pool.track_request()
        pool.track_error()
        pool.track_timeout()

        stats = pool.get_stats()
        assert stats["total_requests"] == 2
        assert stats["errors"] == 1
        assert stats["timeouts"] == 1
        assert observability.get_metric("pool.requests") == 2


class TestBatchRequest:
    """Test request coalescing."""

    async def test_concurrent_calls_share_result(self, pool: ConnectionPool) -> None:
        """Test two concurrent calls with one key get the first function's result."""
        release = asyncio.Event()

        async def first() -> dict[str, str]:
            await release.wait()
            return {"source": "first"}

        second = AsyncMock(return_value={"source": "second"})

        task_a = asyncio.create_task(pool.batch_request("GET /orders", first))
        await asyncio.sleep(0)
        task_b = asyncio.create_task(pool.batch_request("GET /orders", second))
        await asyncio.sleep(0)
        release.set()

        result_a, result_b = await asyncio.gather(task_a, task_b)

        assert result_a is result_b
        assert result_a == {"source": "first"}
        second.assert_not_awaited()
        assert pool.get_stats()["coalesced_requests"] == 1

    async def test_failure_shared_by_all_callers(self, pool: ConnectionPool) -> None:
        """Test every coalesced caller sees the same failure."""
        release = asyncio.Event()
        error = ConnectionError("reset by peer")

        async def failing() -> None:
            await release.wait()
            raise error

        tasks = [asyncio.create_task(pool.batch_request("k", failing)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(result is error for result in results)
        assert pool.get_stats()["in_flight_batches"] == 0

    async def test_record_removed_after_settlement(self, pool: ConnectionPool) -> None:
        """Test sequential calls each invoke their own function."""
        fn = AsyncMock(side_effect=["one", "two"])

        assert await pool.batch_request("k", fn) == "one"
        assert await pool.batch_request("k", fn) == "two"
        assert fn.await_count == 2
        assert pool.get_stats()["in_flight_batches"] == 0

    async def test_different_keys_not_coalesced(self, pool: ConnectionPool) -> None:
        """Test distinct keys run independently."""
        a = AsyncMock(return_value="a")
        b = AsyncMock(return_value="b")

        results = await asyncio.gather(pool.batch_request("a", a), pool.batch_request("b", b))

        assert results == ["a", "b"]
        a.assert_awaited_once()
        b.assert_awaited_once()

    async def test_cancelling_one_caller_keeps_shared_call(self, pool: ConnectionPool) -> None:
        """Test cancellation of one waiter does not cancel the others."""
        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "done"

        waiter_a = asyncio.create_task(pool.batch_request("k", slow))
        await asyncio.sleep(0)
        waiter_b = asyncio.create_task(pool.batch_request("k", slow))
        await asyncio.sleep(0)

        waiter_a.cancel()
        release.set()

        assert await waiter_b == "done"
        with pytest.raises(asyncio.CancelledError):
            await waiter_a

    async def test_failure_with_all_callers_cancelled_is_not_reported(self, pool: ConnectionPool) -> None:
        """Test a shared failure nobody waits for is still marked as retrieved."""
        loop = asyncio.get_running_loop()
        reported: list[dict[str, object]] = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        release = asyncio.Event()

        async def failing() -> None:
            await release.wait()
            raise ConnectionError("reset by peer")

        try:
            waiter = asyncio.create_task(pool.batch_request("k", failing))
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            release.set()
            for _ in range(5):
                await asyncio.sleep(0)
            assert pool.get_stats()["in_flight_batches"] == 0

            del waiter
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reported == []

    async def test_cleanup_batches_removes_stale_records(
        self, pool: ConnectionPool, manual_clock: ManualClock
    ) -> None:
        """Test records older than max_age_ms are swept even if unsettled."""
        release = asyncio.Event()

        async def pending() -> str:
            await release.wait()
            return "late"

        waiter = asyncio.create_task(pool.batch_request("stuck", pending))
        await asyncio.sleep(0)
        assert pool.get_stats()["in_flight_batches"] == 1

        manual_clock.advance(0.5)
        assert pool.cleanup_batches(max_age_ms=1000) == 0

        manual_clock.advance(1)
        assert pool.cleanup_batches(max_age_ms=1000) == 1
        assert pool.get_stats()["in_flight_batches"] == 0

        release.set()
        assert await waiter == "late"

    async def test_auto_sweep_past_threshold(self, manual_clock: ManualClock) -> None:
        """Test the map is swept once it grows past the threshold."""
        pool = ConnectionPool(
            ConnectionPoolConfig(batch_sweep_threshold=2, batch_max_age_ms=50), clock=manual_clock
        )
        release = asyncio.Event()

        async def pending() -> None:
            await release.wait()

        waiters = [asyncio.create_task(pool.batch_request("a", pending))]
        waiters.append(asyncio.create_task(pool.batch_request("b", pending)))
        await asyncio.sleep(0)
        manual_clock.advance(0.1)

        waiters.append(asyncio.create_task(pool.batch_request("c", pending)))
        await asyncio.sleep(0)

        assert pool.get_stats()["in_flight_batches"] == 1

        release.set()
        await asyncio.gather(*waiters)
        await pool.aclose()

    async def test_sync_function(self, pool: ConnectionPool) -> None:
        """Test plain callables are accepted."""
        assert await pool.batch_request("k", lambda: 5) == 5
