"""
SP Resilience - Circuit Breaker Recovery Strategy

Prevents cascading failures by failing fast when a remote dependency keeps
failing.

States:
    CLOSED: Normal operation; tripping failures are counted
    OPEN: Failing fast; the guarded operation is never invoked
    HALF_OPEN: A single probe decides between CLOSED and OPEN

The OPEN -> HALF_OPEN transition is a cancellable task scheduled on the
injected clock, so tests can advance virtual time instead of sleeping.
"""

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

from ..errors import DomainError, ErrorKind
from ..observability import ObservabilityAdapter
from .clock import Cancellable, Clock, SystemClock
from .strategies import RecoveryContext, RecoveryStrategy

logger = logging.getLogger(__name__)

DEFAULT_TRIPPING_KINDS = frozenset({ErrorKind.SERVER, ErrorKind.NETWORK})


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerRecoveryStrategy(RecoveryStrategy):
    """
    Circuit breaker expressed as a recovery strategy.

    A failed recovery of a tripping kind counts towards failure_threshold
    while CLOSED. Once the threshold is reached the circuit opens and
    can_recover reports False until reset_timeout_ms elapses, after which
    exactly one probe is allowed through.

    Args:
        failure_threshold: Tripping failures before opening (default: 5)
        reset_timeout_ms: Delay before the half-open probe (default: 60000)
        tripping_kinds: Error kinds counted as failures
        clock: Time source for the reset timer
        name: Breaker name used in logs and metrics
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: float = 60000,
        tripping_kinds: Iterable[ErrorKind] = DEFAULT_TRIPPING_KINDS,
        clock: Clock | None = None,
        name: str = "default",
        observability: ObservabilityAdapter | None = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be non-negative")

        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.recoverable_kinds = frozenset(tripping_kinds)
        self.name = name

        self._clock = clock or SystemClock()
        self._obs = observability or ObservabilityAdapter()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._reset_handle: Cancellable | None = None
        self._probe_in_flight = False

    @property
    def tripping_kinds(self) -> frozenset[ErrorKind]:
        return self.recoverable_kinds

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def can_recover(self, error: BaseException) -> bool:
        if not super().can_recover(error):
            return False
        return self._state is not CircuitState.OPEN

    async def recover(self, error: DomainError, context: RecoveryContext) -> Any:
        if self._state is CircuitState.OPEN:
            self._obs.increment("circuit_breaker.rejected", tags={"breaker": self.name})
            raise self._open_error(error)

        probing = self._state is CircuitState.HALF_OPEN
        if probing:
            if self._probe_in_flight:
                # Only one probe may run while half-open
                self._obs.increment("circuit_breaker.rejected", tags={"breaker": self.name})
                raise self._open_error(error)
            self._probe_in_flight = True

        try:
            result = await context.operation()
        except DomainError as operation_error:
            self._record_failure(operation_error, probing)
            raise
        finally:
            if probing:
                self._probe_in_flight = False

        if probing and self._state is CircuitState.HALF_OPEN:
            self._close()

        return result

    def reset(self) -> None:
        """Manually force the circuit back to CLOSED."""
        self._cancel_reset_timer()
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        if previous is not CircuitState.CLOSED:
            self._on_state_change(previous, CircuitState.CLOSED)
        logger.info(f"Circuit breaker reset for {self.name}")

    def get_stats(self) -> dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_ms": self.reset_timeout_ms,
            "tripping_kinds": sorted(kind.value for kind in self.recoverable_kinds),
        }

    def _record_failure(self, error: DomainError, probing: bool) -> None:
        if error.kind not in self.recoverable_kinds:
            return

        self._obs.increment(
            "circuit_breaker.failure",
            tags={"breaker": self.name, "error_code": error.code},
        )

        if self._state is CircuitState.CLOSED:
            self._failure_count += 1
            logger.debug(
                f"Circuit breaker failure count increased to {self._failure_count}/{self.failure_threshold}",
                extra={
                    "breaker": self.name,
                    "failure_count": self._failure_count,
                    "failure_threshold": self.failure_threshold,
                    "error_code": error.code,
                },
            )
            if self._failure_count >= self.failure_threshold:
                self._open()
        elif probing and self._state is CircuitState.HALF_OPEN:
            self._open()

    def _open(self) -> None:
        previous = self._state
        self._state = CircuitState.OPEN
        self._opened_at = self._clock.now()
        self._schedule_half_open()
        self._on_state_change(previous, CircuitState.OPEN)

    def _close(self) -> None:
        self._cancel_reset_timer()
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._on_state_change(previous, CircuitState.CLOSED)

    def _half_open(self) -> None:
        self._reset_handle = None
        if self._state is not CircuitState.OPEN:
            return
        self._state = CircuitState.HALF_OPEN
        self._on_state_change(CircuitState.OPEN, CircuitState.HALF_OPEN)

    def _schedule_half_open(self) -> None:
        self._cancel_reset_timer()
        self._reset_handle = self._clock.call_later(self.reset_timeout_ms / 1000, self._half_open)

    def _cancel_reset_timer(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _open_error(self, cause: DomainError) -> DomainError:
        elapsed_ms = 0.0
        if self._opened_at is not None:
            elapsed_ms = (self._clock.now() - self._opened_at) * 1000
        reset_after_ms = max(0.0, self.reset_timeout_ms - elapsed_ms)

        logger.warning(
            "Operation rejected by circuit breaker",
            extra={
                "breaker": self.name,
                "circuit_state": self._state.value,
                "reset_after_ms": reset_after_ms,
                "error_code": cause.code,
            },
        )

        open_error = DomainError(
            ErrorKind.CIRCUIT_OPEN,
            f"Circuit breaker {self._state.value} for {self.name}",
            details={
                "breaker": self.name,
                "circuit_state": self._state.value,
                "failure_count": self._failure_count,
                "reset_after_ms": reset_after_ms,
            },
        )
        open_error.__cause__ = cause
        return open_error

    def _on_state_change(self, old_state: CircuitState, new_state: CircuitState) -> None:
        """Log state changes and emit observability metrics."""
        logger.warning(
            f"Circuit breaker state change: {old_state.name} -> {new_state.name}",
            extra={
                "breaker": self.name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failure_count": self._failure_count,
                "reset_timeout_ms": self.reset_timeout_ms,
            },
        )
        self._obs.increment(
            "circuit_breaker.state_change",
            tags={
                "breaker": self.name,
                "old_state": old_state.value,
                "new_state": new_state.value,
            },
        )
