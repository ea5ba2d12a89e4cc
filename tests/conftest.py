"""
SP Resilience — Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
Time-dependent behaviour is driven through ManualClock, never real sleeps.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from sp_resilience.errors import ApiError
from sp_resilience.observability import ObservabilityAdapter
from sp_resilience.resilience.clock import ManualClock


@pytest.fixture
def manual_clock() -> ManualClock:
    """Virtual clock starting at a fixed epoch."""
    return ManualClock()


@pytest.fixture
def observability() -> ObservabilityAdapter:
    """Fresh metrics adapter for each test."""
    return ObservabilityAdapter(enable_metrics=True)


@pytest.fixture
def temp_cache_dir(tmp_path: Path) -> Path:
    """Isolated storage directory for persistent cache tests."""
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


@pytest.fixture
def make_api_error() -> Callable[..., ApiError]:
    """Factory for transport-shaped API errors."""

    def _make(
        status_code: int | None = 500,
        message: str = "Request failed",
        headers: dict[str, str] | None = None,
        body: Any = None,
        code: str | None = None,
    ) -> ApiError:
        return ApiError(message, status_code=status_code, headers=headers, body=body, code=code)

    return _make
