"""
utils/decorators.py - Function Decorators

Retry on exception with exponential backoff.
"""

import asyncio
import functools
import logging
from typing import Callable

logger = logging.getLogger(__name__)


def retry_on_exception(
    max_retries: int = 3,
    exceptions: tuple = (Exception,),
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: float = 60.0,
    on_retry: Callable = None
):
    """
    Decorator to retry an async callable on exception.

    The last exception is re-raised once max_retries extra attempts
    have failed.

    Args:
        max_retries: Maximum retry attempts
        exceptions: Tuple of exceptions to catch
        delay: Initial delay between retries
        backoff: Backoff multiplier
        max_delay: Maximum delay
        on_retry: Callback on retry (receives exception, attempt number)

    Example:
        @retry_on_exception(max_retries=3, exceptions=(ChainReadError,))
        async def read_shares():
            pass
    """
    def decorator(func: Callable):
        name = getattr(func, "__name__", repr(func))

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        raise

                    if on_retry:
                        on_retry(e, attempt + 1)

                    logger.warning(
                        f"{name} failed (attempt {attempt + 1}/{max_retries + 1}): {e}"
                    )

                    await asyncio.sleep(current_delay)
                    current_delay = min(current_delay * backoff, max_delay)

        return async_wrapper

    return decorator
