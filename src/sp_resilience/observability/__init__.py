"""
SP Resilience — Observability Module

Metrics and structured logging shared by the cache, pool and recovery
components. Each runtime owns one ObservabilityAdapter and passes it to
the components it builds.

Usage:
    from sp_resilience.observability import ObservabilityAdapter

    obs = ObservabilityAdapter()
    obs.increment("cache.hits")
    obs.get_metric("cache.hits")
"""

from .monitoring import (
    JSONFormatter,
    ObservabilityAdapter,
    configure_logging,
)

__all__ = [
    "JSONFormatter",
    "ObservabilityAdapter",
    "configure_logging",
]
