"""
SP Resilience - Retry with Exponential Backoff

Retry recovery strategy for transient API failures.

- Honors server-provided retry-after waits for rate limiting and throttling
- Exponential backoff with positive jitter otherwise
- Never exceeds the configured retry budget
"""

import logging
import random
from collections.abc import Iterable
from typing import Any

from ..errors import DomainError, ErrorKind
from ..observability import ObservabilityAdapter
from .clock import Clock, SystemClock
from .strategies import RecoveryContext, RecoveryStrategy

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.SERVER,
        ErrorKind.RATE_LIMIT_EXCEEDED,
        ErrorKind.THROTTLING,
    }
)


def exponential_backoff(
    attempt: int,
    base_delay_ms: float = 1000.0,
    max_delay_ms: float = 30000.0,
    jitter_ratio: float = 0.25,
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    The delay doubles per attempt up to max_delay_ms; jitter adds a random
    0..jitter_ratio share of that delay. The result never exceeds
    max_delay_ms.

    Args:
        attempt: Retries already performed (0-indexed)
        base_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay cap
        jitter_ratio: Upper bound of jitter as a fraction of the delay

    Returns:
        Delay in milliseconds

    Example:
        >>> exponential_backoff(0, jitter_ratio=0)
        1000.0
        >>> exponential_backoff(3, jitter_ratio=0)
        8000.0
    """
    delay = min(max_delay_ms, base_delay_ms * (2**attempt))

    if jitter_ratio > 0:
        delay += random.uniform(0, jitter_ratio * delay)

    return float(min(max_delay_ms, delay))


class RetryRecoveryStrategy(RecoveryStrategy):
    """
    Re-invokes the operation once after a backoff wait.

    Looping across several attempts is driven by the caller through
    RecoveryContext.retry_count; once it reaches max_retries the original
    error is re-raised without touching the operation.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: float = 1000.0,
        max_delay_ms: float = 30000.0,
        jitter_ratio: float = 0.25,
        recoverable_kinds: Iterable[ErrorKind] = RETRYABLE_KINDS,
        clock: Clock | None = None,
        observability: ObservabilityAdapter | None = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")
        if max_delay_ms < base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if not 0 <= jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1")

        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_ratio = jitter_ratio
        self.recoverable_kinds = frozenset(recoverable_kinds)
        self._clock = clock or SystemClock()
        self._obs = observability or ObservabilityAdapter()

    def compute_delay_ms(self, error: DomainError, retry_count: int) -> float:
        """Wait before the next attempt: retry-after if present, else backoff."""
        if error.retry_after_ms is not None:
            return float(error.retry_after_ms)
        return exponential_backoff(
            attempt=retry_count,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ratio=self.jitter_ratio,
        )

    async def recover(self, error: DomainError, context: RecoveryContext) -> Any:
        retry_count = context.retry_count

        if retry_count >= self.max_retries:
            logger.error(
                f"Retry failed after {retry_count} attempts",
                extra={
                    "error": error.message,
                    "error_code": error.code,
                    "max_retries": self.max_retries,
                },
            )
            self._obs.increment("retry.exhausted", tags={"error_code": error.code})
            raise error

        delay_ms = self.compute_delay_ms(error, retry_count)

        logger.warning(
            f"Retry attempt {retry_count + 1}/{self.max_retries} after {delay_ms:.0f}ms",
            extra={
                "attempt": retry_count + 1,
                "max_retries": self.max_retries,
                "delay_ms": delay_ms,
                "error": error.message,
                "error_code": error.code,
            },
        )
        self._obs.increment("retry.attempt", tags={"error_code": error.code})
        self._obs.histogram("retry.delay_ms", delay_ms)

        await self._clock.sleep(delay_ms / 1000)

        return await context.operation()
