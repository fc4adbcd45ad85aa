"""Retry logic with exponential backoff for remote API calls."""

import asyncio
import logging
from functools import wraps
from typing import Callable, Any, Type, Tuple

from services.reminder_sync.errors import RetryableError, TransportExhausted

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, initial_delay: float, exponential_base: float = 2.0) -> float:
    """Delay before the retry that follows the given (1-based) attempt."""
    return initial_delay * (exponential_base ** (attempt - 1))


def retry_with_exponential_backoff(
    max_attempts: int = 4,
    initial_delay: float = 1.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (RetryableError,)
):
    """
    Decorator to retry a coroutine function with exponential backoff.

    Only the listed exception types are retried; anything else propagates
    on the first occurrence.

    Args:
        max_attempts: Total number of attempts, including the first one
        initial_delay: Delay in seconds after the first failed attempt
        exponential_base: Multiplier applied to the delay per attempt
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated coroutine function raising TransportExhausted once all
        attempts have failed
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt < max_attempts:
                        delay = backoff_delay(attempt, initial_delay, exponential_base)

                        logger.warning(
                            f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {e}. "
                            f"Retrying in {delay:.2f} seconds..."
                        )

                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"All {max_attempts} attempts failed for {func.__name__}: {e}"
                        )

            raise TransportExhausted(last_exception, max_attempts)

        return wrapper

    return decorator
