"""
SP Resilience — Configuration Schemas

Typed configuration models using Pydantic for validation and type safety.
Configuration is supplied once at startup and threaded explicitly through
the components that need it.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def default_storage_directory() -> Path:
    return Path.home() / ".sp-resilience" / "cache"


class CacheConfig(BaseModel):
    """Cache configuration."""

    default_ttl_seconds: int = Field(default=60, ge=0, description="Default TTL in seconds (0 = no expiry)")
    max_entries: int = Field(default=1000, ge=1, description="Max in-memory entries before eviction")
    persistent: bool = Field(default=False, description="Persist entries to disk")
    storage_directory: Path = Field(
        default_factory=default_storage_directory,
        description="Directory for persisted cache entries",
    )

    @field_validator("storage_directory")
    @classmethod
    def expand_storage_directory(cls, v: Path) -> Path:
        """Expand ~ in the storage directory."""
        return v.expanduser()


class ConnectionPoolConfig(BaseModel):
    """Connection pool and request batching configuration."""

    max_sockets: int = Field(default=10, ge=1, description="Maximum connections per transport")
    max_free_sockets: int = Field(default=5, ge=0, description="Maximum idle keep-alive connections")
    timeout_ms: int = Field(default=60000, ge=1, description="Request timeout in milliseconds")
    keep_alive: bool = Field(default=True, description="Reuse connections between requests")
    keep_alive_timeout_ms: int = Field(default=60000, ge=0, description="Idle keep-alive expiry in milliseconds")
    batch_max_age_ms: int = Field(default=50, ge=0, description="Age after which batch records are swept")
    batch_sweep_threshold: int = Field(default=100, ge=1, description="Batch map size that triggers a sweep")

    @model_validator(mode="after")
    def validate_free_sockets(self) -> "ConnectionPoolConfig":
        """Idle connections cannot exceed the connection limit."""
        if self.max_free_sockets > self.max_sockets:
            raise ValueError("max_free_sockets must be <= max_sockets")
        return self


class RecoveryConfig(BaseModel):
    """Error recovery defaults."""

    max_retries: int = Field(default=3, ge=0, description="Maximum retry attempts")
    base_delay_ms: int = Field(default=100, ge=0, description="Initial backoff delay in milliseconds")
    max_delay_ms: int = Field(default=30000, ge=0, description="Backoff delay cap in milliseconds")
    jitter_ratio: float = Field(default=0.25, ge=0.0, le=1.0, description="Maximum jitter as fraction of delay")
    circuit_failure_threshold: int = Field(default=5, ge=1, description="Failures before the circuit opens")
    circuit_reset_timeout_ms: int = Field(default=30000, ge=0, description="Delay before a half-open probe")

    @model_validator(mode="after")
    def validate_delays(self) -> "RecoveryConfig":
        """Ensure the delay cap is not below the base delay."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class ObservabilityConfig(BaseModel):
    """Observability and logging configuration."""

    enable_metrics: bool = Field(default=True, description="Enable metrics collection")
    enable_tracing: bool = Field(default=False, description="Enable span tracing")
    json_logs: bool = Field(default=True, description="Emit logs as JSON")
    max_histogram_samples: int = Field(default=1000, ge=1, description="Recent samples kept per histogram")


class ResilienceConfig(BaseModel):
    """Root configuration for SP Resilience."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    cache: CacheConfig = Field(default_factory=CacheConfig)
    connection_pool: ConnectionPoolConfig = Field(default_factory=ConnectionPoolConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
