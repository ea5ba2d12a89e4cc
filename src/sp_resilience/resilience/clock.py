"""
SP Resilience - Clock Abstraction

Injectable time source for every wait and scheduled transition in the
resilience layer. Production code uses SystemClock; tests drive ManualClock
to advance virtual time deterministically instead of sleeping.
"""

import asyncio
import heapq
import itertools
import time
from collections.abc import Callable
from typing import Protocol


class Cancellable(Protocol):
    """Handle for a scheduled callback."""

    def cancel(self) -> None: ...


class Clock(Protocol):
    """Time source used by retry waits, circuit timers and cache expiry."""

    def now(self) -> float:
        """Current time in seconds since the epoch."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        """Schedule callback after delay seconds."""
        ...


class SystemClock:
    """Wall-clock time backed by the running asyncio event loop."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        return asyncio.get_running_loop().call_later(delay, callback)


class ScheduledCall:
    """Pending callback registered on a ManualClock."""

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """
    Virtual clock for deterministic tests.

    Time only moves when advance() or sleep() is called. Scheduled callbacks
    fire synchronously, in due order, as time passes their deadline.

    Example:
        >>> clock = ManualClock()
        >>> clock.call_later(30, lambda: print("half-open"))
        >>> clock.advance(30)
        half-open
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._counter = itertools.count()
        self._scheduled: list[tuple[float, int, ScheduledCall]] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        # Let other tasks observe the new time
        await asyncio.sleep(0)

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        handle = ScheduledCall(self._now + max(0.0, delay), callback)
        heapq.heappush(self._scheduled, (handle.when, next(self._counter), handle))
        return handle

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every callback that becomes due."""
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")

        target = self._now + seconds
        while self._scheduled and self._scheduled[0][0] <= target:
            when, _, handle = heapq.heappop(self._scheduled)
            self._now = max(self._now, when)
            if not handle.cancelled:
                handle.callback()
        self._now = target

    @property
    def pending(self) -> int:
        """Number of scheduled, non-cancelled callbacks."""
        return sum(1 for _, _, handle in self._scheduled if not handle.cancelled)
