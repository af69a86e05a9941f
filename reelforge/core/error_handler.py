"""
Retry handling for Reelforge.

This module provides:
- RetryConfig, built from the processing section of the configuration
- Backoff delay calculation
- retry_async(), the generic retry wrapper the processing queue puts around
  every render

The wrapper does not look at the failure class beyond the `no_retry` list;
failure-aware recovery (audio filter and encoder fallback) happens inside the
render executor.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from reelforge import settings
from reelforge.media.exceptions import MediaValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, Exception, float], None]


class RetryConfig:
    """Retry configuration"""
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_backoff: bool = True,
        jitter: bool = False
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_backoff = exponential_backoff
        self.jitter = jitter

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_attempts=settings.get_retry_attempts(),
            base_delay=settings.get_retry_delay_seconds(),
        )

    def __repr__(self) -> str:
        return (f"RetryConfig(max_attempts={self.max_attempts}, base_delay={self.base_delay}, "
                f"max_delay={self.max_delay}, exponential_backoff={self.exponential_backoff})")


def calculate_retry_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate retry delay with exponential backoff and optional jitter"""
    if config.exponential_backoff:
        delay = config.base_delay * (2 ** (attempt - 1))
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= (0.5 + random.random() * 0.5)

    return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    no_retry: Tuple[Type[BaseException], ...] = (MediaValidationError,),
    on_retry: Optional[RetryCallback] = None,
) -> T:
    """
    Await `fn()` until it succeeds or the attempts are used up.

    Args:
        fn: Zero-argument coroutine function, called once per attempt
        config: Retry policy (default: processing section of the configuration)
        no_retry: Exception types raised immediately without another attempt
        on_retry: Called with (attempt, error, delay) before each wait

    Returns:
        The result of the first successful attempt

    Raises:
        The last error once all attempts failed
    """
    config = config or RetryConfig.from_settings()
    last_exception: Optional[Exception] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn()
        except no_retry:
            raise
        except Exception as e:
            last_exception = e
            if attempt >= config.max_attempts:
                break
            delay = calculate_retry_delay(attempt, config)
            logger.warning(f"Attempt {attempt}/{config.max_attempts} failed: {e}. Retrying in {delay:.1f}s")
            if on_retry:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)

    raise last_exception
