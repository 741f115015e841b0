"""
Retry utilities for handling transient errors with exponential backoff.
Used by API-backed handlers only; transport and storage layers do not retry.
"""
import asyncio
import logging
import random
from functools import wraps
from typing import Any, Callable, List, Optional, Type

import httpx

from .exceptions import APIError

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None,
        retryable_status_codes: Optional[List[int]] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [APIError, httpx.TransportError]
        self.retryable_status_codes = retryable_status_codes or [
            500, 502, 503, 504, 429  # Server errors and rate limiting
        ]


def is_retryable_error(error: Exception, config: RetryConfig) -> bool:
    """
    Determine if an error is retryable based on configuration.

    APIError is only retryable when it carries a retryable status code;
    a 404 from a mirror API is a permanent answer.
    """
    if isinstance(error, APIError):
        return error.status_code in config.retryable_status_codes

    return any(isinstance(error, exc_type) for exc_type in config.retryable_exceptions)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for exponential backoff with jitter.

    Args:
        attempt: Current attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Add jitter to prevent thundering herd
        jitter_range = delay * 0.1
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


async def retry_async(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """
    Execute an async function with retry logic.

    Raises:
        The last exception encountered if all retries fail
    """
    last_exception: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"✅ Function {func.__name__} succeeded on attempt {attempt + 1}")
            return result

        except Exception as e:
            last_exception = e

            if not is_retryable_error(e, config):
                logger.debug(f"❌ Non-retryable error in {func.__name__}: {e}")
                raise

            if attempt == config.max_attempts - 1:
                logger.warning(f"❌ All {config.max_attempts} retry attempts failed for {func.__name__}")
                break

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"⚠️ Attempt {attempt + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    assert last_exception is not None
    raise last_exception


def with_retry(config: Optional[RetryConfig] = None):
    """
    Decorator to add retry logic to async functions.
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_async(func, config, *args, **kwargs)

        return wrapper

    return decorator


# Mirror APIs are latency-sensitive: keep the total retry budget small
MIRROR_API_RETRY_CONFIG = RetryConfig(
    max_attempts=2,
    base_delay=0.5,
    max_delay=2.0,
    exponential_base=2.0,
    jitter=True,
    retryable_exceptions=[APIError, httpx.TransportError],
    retryable_status_codes=[500, 502, 503, 504, 429],
)
