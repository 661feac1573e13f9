"""
Retry helpers for transient store failures.

Only idempotent reads go through these helpers. Writes that change
registration state are never retried implicitly.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

from .exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 2
    base_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay


READ_RETRY = RetryConfig()


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    config: RetryConfig = READ_RETRY,
    retryable_exceptions: Tuple[Type[BaseException], ...] = (ConcurrencyError,),
    **kwargs: Any
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: The async function to retry
        config: Retry configuration
        retryable_exceptions: Exceptions that should trigger retries
        *args, **kwargs: Arguments to pass to the function

    Returns:
        The result of the function call

    Raises:
        The last exception if all retries are exhausted
    """
    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"{func.__name__} succeeded on attempt {attempt + 1}")
            return result

        except retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error(f"All {config.max_attempts} attempts failed for {func.__name__}")
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
