"""
SP Resilience — Configuration Loader

Builds a validated ResilienceConfig from environment variables and an
optional .env file. Each call returns a new instance; callers own it and
pass it to the runtime explicitly.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import ResilienceConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "SP_"


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _read_env_file(env_file: str | Path | None) -> dict[str, str]:
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if not env_path.exists():
        if env_file:
            raise ConfigurationError(
                f"Environment file not found: {env_path}",
                details={"path": str(env_path)},
            )
        logger.debug("No .env file found, using environment variables only")
        return {}

    logger.info(f"Loading environment from {env_path}")
    try:
        values = dotenv_values(env_path)
    except Exception as e:
        logger.error(
            f"Failed to load .env file from {env_path}: {e}",
            extra={"path": str(env_path), "error": str(e)},
            exc_info=True,
        )
        raise ConfigurationError(
            f"Failed to load environment file: {e}",
            details={"path": str(env_path), "error": str(e)},
        ) from e

    return {key: value for key, value in values.items() if value is not None}


def _build_config_dict(env: Mapping[str, str]) -> dict[str, Any]:
    """Map SP_* variables onto the nested config structure, keeping defaults for unset keys."""

    def get(name: str) -> str | None:
        return env.get(f"{ENV_PREFIX}{name}")

    sections: dict[str, dict[str, tuple[str, Any]]] = {
        "cache": {
            "default_ttl_seconds": ("CACHE_TTL_SECONDS", int),
            "max_entries": ("CACHE_MAX_ENTRIES", int),
            "persistent": ("CACHE_PERSISTENT", _flag),
            "storage_directory": ("CACHE_DIR", str),
        },
        "connection_pool": {
            "max_sockets": ("POOL_MAX_SOCKETS", int),
            "max_free_sockets": ("POOL_MAX_FREE_SOCKETS", int),
            "timeout_ms": ("POOL_TIMEOUT_MS", int),
            "keep_alive": ("POOL_KEEP_ALIVE", _flag),
            "keep_alive_timeout_ms": ("POOL_KEEP_ALIVE_TIMEOUT_MS", int),
            "batch_max_age_ms": ("POOL_BATCH_MAX_AGE_MS", int),
            "batch_sweep_threshold": ("POOL_BATCH_SWEEP_THRESHOLD", int),
        },
        "recovery": {
            "max_retries": ("RETRY_MAX_RETRIES", int),
            "base_delay_ms": ("RETRY_BASE_DELAY_MS", int),
            "max_delay_ms": ("RETRY_MAX_DELAY_MS", int),
            "jitter_ratio": ("RETRY_JITTER_RATIO", float),
            "circuit_failure_threshold": ("CIRCUIT_FAILURE_THRESHOLD", int),
            "circuit_reset_timeout_ms": ("CIRCUIT_RESET_TIMEOUT_MS", int),
        },
        "observability": {
            "enable_metrics": ("ENABLE_METRICS", _flag),
            "enable_tracing": ("ENABLE_TRACING", _flag),
            "json_logs": ("JSON_LOGS", _flag),
            "max_histogram_samples": ("HISTOGRAM_SAMPLES", int),
        },
    }

    config_dict: dict[str, Any] = {
        "environment": get("ENVIRONMENT") or "development",
        "log_level": (get("LOG_LEVEL") or "INFO").upper(),
    }

    for section, fields in sections.items():
        values: dict[str, Any] = {}
        for field_name, (env_name, convert) in fields.items():
            raw = get(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{env_name}: {raw!r}",
                    details={"variable": f"{ENV_PREFIX}{env_name}", "value": raw},
                ) from e
        config_dict[section] = values

    return config_dict


def load_config(
    env_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ResilienceConfig:
    """
    Load configuration from environment variables and .env file.

    Process environment variables take precedence over values from the
    .env file. The .env file is read without modifying os.environ.

    Args:
        env_file: Path to .env file (default: .env in working directory, if present)
        environ: Environment mapping to read instead of os.environ

    Returns:
        Validated ResilienceConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    env: dict[str, str] = _read_env_file(env_file)
    env.update(os.environ if environ is None else environ)

    config_dict = _build_config_dict(env)

    try:
        config = ResilienceConfig(**config_dict)
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "config_dict_keys": list(config_dict.keys())},
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e

    logger.info(
        f"Configuration loaded successfully (environment: {config.environment})",
        extra={"environment": config.environment, "persistent_cache": config.cache.persistent},
    )
    return config
