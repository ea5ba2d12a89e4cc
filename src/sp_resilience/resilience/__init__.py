"""
SP Resilience - Resilience Module

Recovery policies for outbound API calls:
- Retry with exponential backoff and retry-after awareness
- Fallback substitution for configured error kinds
- Circuit breaker state machine on an injectable clock
- ErrorRecoveryManager orchestrating strategies in priority order
"""

from .circuit_breaker import CircuitBreakerRecoveryStrategy, CircuitState
from .clock import Clock, ManualClock, SystemClock
from .manager import ErrorRecoveryManager, create_default_error_recovery_manager
from .retry import RETRYABLE_KINDS, RetryRecoveryStrategy, exponential_backoff
from .strategies import FallbackRecoveryStrategy, RecoveryContext, RecoveryStrategy

__all__ = [
    # Strategy contract
    "RecoveryStrategy",
    "RecoveryContext",
    # Strategies
    "RetryRecoveryStrategy",
    "FallbackRecoveryStrategy",
    "CircuitBreakerRecoveryStrategy",
    "CircuitState",
    "RETRYABLE_KINDS",
    "exponential_backoff",
    # Orchestration
    "ErrorRecoveryManager",
    "create_default_error_recovery_manager",
    # Clocks
    "Clock",
    "SystemClock",
    "ManualClock",
]
