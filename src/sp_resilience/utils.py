"""
SP Resilience - Shared helpers
"""

import inspect
from collections.abc import Callable
from typing import Any


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """
    Call a sync or async callable and return its result.

    Covers coroutine functions as well as plain callables (including lambdas)
    that return an awaitable.
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


def callable_name(func: Callable[..., Any]) -> str:
    """Best-effort name of a callable for log fields."""
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or type(func).__name__
