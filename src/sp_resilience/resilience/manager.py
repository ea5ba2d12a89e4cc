"""
SP Resilience - Error Recovery Manager

Runs an operation and, on failure, hands the classified error to the first
configured strategy able to recover from it.

Architecture:
    Caller → ErrorRecoveryManager → [Retry, Fallback, CircuitBreaker] → operation
"""

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from ..config import RecoveryConfig
from ..errors import ApiError, ErrorKind, translate_api_error
from ..observability import ObservabilityAdapter
from ..utils import call_maybe_async, callable_name
from .circuit_breaker import CircuitBreakerRecoveryStrategy
from .clock import Clock
from .retry import RetryRecoveryStrategy
from .strategies import FallbackFn, FallbackRecoveryStrategy, Operation, RecoveryContext, RecoveryStrategy

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (ApiError, httpx.HTTPError, ConnectionError, TimeoutError)

DEFAULT_FALLBACK_KINDS = frozenset({ErrorKind.CIRCUIT_OPEN, ErrorKind.RESOURCE_NOT_FOUND})


class ErrorRecoveryManager:
    """
    Orchestrates an ordered list of recovery strategies around one operation.

    At most one recovery attempt is made per invocation. If the selected
    strategy fails, its error propagates unchanged; if no strategy matches,
    the classified error is raised.
    """

    def __init__(
        self,
        strategies: Iterable[RecoveryStrategy] = (),
        observability: ObservabilityAdapter | None = None,
    ):
        self._strategies: list[RecoveryStrategy] = list(strategies)
        self._obs = observability or ObservabilityAdapter()

    @property
    def strategies(self) -> tuple[RecoveryStrategy, ...]:
        return tuple(self._strategies)

    def add_strategy(self, strategy: RecoveryStrategy) -> None:
        """Append a recovery strategy (lowest priority)."""
        self._strategies.append(strategy)

    async def execute_with_recovery(self, operation: Operation, retry_count: int = 0) -> Any:
        """
        Execute an operation with error recovery.

        Args:
            operation: Callable producing the result (sync or async)
            retry_count: Retries already performed by the caller

        Returns:
            The operation result, or the result of a successful recovery

        Raises:
            DomainError: Classified failure no strategy could recover from
            Exception: Failure raised by the selected strategy, unchanged
        """

        async def translated_operation() -> Any:
            try:
                return await call_maybe_async(operation)
            except TRANSPORT_ERRORS as exc:
                raise translate_api_error(exc) from exc

        try:
            return await translated_operation()
        except Exception as exc:
            error = exc

        for strategy in self._strategies:
            if not strategy.can_recover(error):
                continue

            strategy_name = type(strategy).__name__
            logger.info(
                f"Recovering with {strategy_name}",
                extra={
                    "strategy": strategy_name,
                    "operation": callable_name(operation),
                    "error_code": getattr(error, "code", None),
                    "retry_count": retry_count,
                },
            )
            self._obs.increment("recovery.attempt", tags={"strategy": strategy_name})

            context = RecoveryContext(
                operation=translated_operation,
                retry_count=retry_count,
                original_error=error,
            )
            try:
                result = await strategy.recover(error, context)  # type: ignore[arg-type]
            except Exception:
                self._obs.increment("recovery.failed", tags={"strategy": strategy_name})
                raise

            self._obs.increment("recovery.succeeded", tags={"strategy": strategy_name})
            return result

        logger.debug(
            f"No recovery strategy for {type(error).__name__}",
            extra={"error": str(error), "error_code": getattr(error, "code", None)},
        )
        raise error


def create_default_error_recovery_manager(
    config: RecoveryConfig | None = None,
    fallback_fn: FallbackFn | None = None,
    fallback_kinds: Iterable[ErrorKind] = DEFAULT_FALLBACK_KINDS,
    clock: Clock | None = None,
    observability: ObservabilityAdapter | None = None,
) -> ErrorRecoveryManager:
    """
    Create a manager wired Retry → Fallback → CircuitBreaker.

    The fallback strategy is only included when a fallback function is
    supplied.

    Args:
        config: Recovery defaults (3 retries, 100ms base delay, 30s reset)
        fallback_fn: Optional fallback producing a substitute result
        fallback_kinds: Error kinds the fallback handles
        clock: Time source shared by retry waits and the circuit timer
        observability: Metrics adapter shared by all strategies
    """
    config = config or RecoveryConfig()
    obs = observability or ObservabilityAdapter()

    manager = ErrorRecoveryManager(observability=obs)
    manager.add_strategy(
        RetryRecoveryStrategy(
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            jitter_ratio=config.jitter_ratio,
            clock=clock,
            observability=obs,
        )
    )
    if fallback_fn is not None:
        manager.add_strategy(FallbackRecoveryStrategy(fallback_fn, fallback_kinds))
    manager.add_strategy(
        CircuitBreakerRecoveryStrategy(
            failure_threshold=config.circuit_failure_threshold,
            reset_timeout_ms=config.circuit_reset_timeout_ms,
            clock=clock,
            observability=obs,
        )
    )
    return manager
