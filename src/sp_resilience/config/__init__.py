"""
SP Resilience — Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import load_config
from .schemas import (
    CacheConfig,
    ConnectionPoolConfig,
    Environment,
    LogLevel,
    ObservabilityConfig,
    RecoveryConfig,
    ResilienceConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Main config
    "ResilienceConfig",
    # Enums
    "Environment",
    "LogLevel",
    # Config sections
    "CacheConfig",
    "ConnectionPoolConfig",
    "RecoveryConfig",
    "ObservabilityConfig",
]
