"""
SP Resilience

Error translation, recovery strategies, caching and connection pooling for
Selling Partner API clients.
"""

from .cache import CacheManager, CacheStats
from .config import ResilienceConfig, load_config
from .errors import (
    ApiError,
    ConfigurationError,
    DomainError,
    ErrorKind,
    ResilienceError,
    handle_resource_error,
    handle_tool_error,
    translate_api_error,
    translate_to_error_response,
)
from .pool import ConnectionPool
from .resilience import (
    CircuitBreakerRecoveryStrategy,
    CircuitState,
    ErrorRecoveryManager,
    FallbackRecoveryStrategy,
    ManualClock,
    RecoveryContext,
    RecoveryStrategy,
    RetryRecoveryStrategy,
    SystemClock,
    create_default_error_recovery_manager,
)
from .runtime import ResilienceRuntime

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Errors
    "ErrorKind",
    "ResilienceError",
    "ConfigurationError",
    "DomainError",
    "ApiError",
    "translate_api_error",
    "translate_to_error_response",
    "handle_tool_error",
    "handle_resource_error",
    # Recovery
    "RecoveryStrategy",
    "RecoveryContext",
    "RetryRecoveryStrategy",
    "FallbackRecoveryStrategy",
    "CircuitBreakerRecoveryStrategy",
    "CircuitState",
    "ErrorRecoveryManager",
    "create_default_error_recovery_manager",
    "SystemClock",
    "ManualClock",
    # Cache
    "CacheManager",
    "CacheStats",
    # Pool
    "ConnectionPool",
    # Config
    "ResilienceConfig",
    "load_config",
    # Runtime
    "ResilienceRuntime",
]
