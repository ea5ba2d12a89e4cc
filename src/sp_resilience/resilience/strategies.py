"""
SP Resilience - Recovery Strategy Contract

Defines the interface shared by every recovery policy, the per-attempt
recovery context, and the fallback strategy.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from ..errors import DomainError, ErrorKind
from ..utils import call_maybe_async, callable_name

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class RecoveryContext:
    """
    State handed to a strategy for one recovery attempt.

    Attributes:
        operation: Re-invokes the guarded call
        retry_count: Number of retries already performed (>= 0)
        original_error: Error that triggered this recovery
    """

    operation: Operation
    retry_count: int = 0
    original_error: BaseException | None = None

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must be non-negative")


class RecoveryStrategy(ABC):
    """
    Base class for recovery policies.

    Subclasses declare which error kinds they handle; can_recover is a
    membership test against that set and never matches unclassified
    exceptions.
    """

    recoverable_kinds: frozenset[ErrorKind] = frozenset()

    def can_recover(self, error: BaseException) -> bool:
        """Whether this strategy handles the given error."""
        return isinstance(error, DomainError) and error.kind in self.recoverable_kinds

    @abstractmethod
    async def recover(self, error: DomainError, context: RecoveryContext) -> Any:
        """
        Recover from the error.

        Returns:
            Result standing in for the failed operation

        Raises:
            The original error or a new error if recovery fails
        """
        pass


FallbackFn = Callable[[DomainError, RecoveryContext], Any]


class FallbackRecoveryStrategy(RecoveryStrategy):
    """
    Substitutes a fallback result for configured error kinds.

    The fallback receives the error and context and may be sync or async.
    The original operation is never re-invoked.
    """

    def __init__(self, fallback_fn: FallbackFn, recoverable_kinds: Iterable[ErrorKind] = ()):
        self.fallback_fn = fallback_fn
        self.recoverable_kinds = frozenset(recoverable_kinds)

    async def recover(self, error: DomainError, context: RecoveryContext) -> Any:
        logger.info(
            f"Using fallback for {error.kind.value}",
            extra={
                "error_code": error.code,
                "fallback": callable_name(self.fallback_fn),
                "retry_count": context.retry_count,
            },
        )
        return await call_maybe_async(self.fallback_fn, error, context)
