"""Retry utility with exponential backoff.

Supports transient vs permanent failure classification via retryable_exceptions.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay to wait after the given (1-based) failed attempt."""
    return base_delay * (2 ** (attempt - 1))


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Delay after failed attempt n follows: base_delay * 2^(n-1)

    Args:
        max_attempts: Total number of attempts, including the first (default 3).
        base_delay: Delay in seconds after the first failed attempt.
        retryable_exceptions: Tuple of exception types eligible for retry.
            If None, all exceptions are retried.
            Non-retryable exceptions are re-raised immediately with
            _attempts attached.

    Returns:
        Decorator that wraps an async function with retry logic.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error: Exception | None = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    last_error = exc
                    exc._attempts = attempt  # type: ignore[attr-defined]
                    # Permanent failure: re-raise immediately
                    if retryable_exceptions is not None and not isinstance(
                        exc, retryable_exceptions
                    ):
                        raise
                    if attempt < max_attempts:
                        delay = backoff_delay(attempt, base_delay)
                        logger.warning(
                            "Retry %d/%d for %s after %.1fs: %s",
                            attempt,
                            max_attempts - 1,
                            func.__name__,
                            delay,
                            exc,
                        )
                        await asyncio.sleep(delay)
            raise last_error  # type: ignore[misc]

        return wrapper

    return decorator
