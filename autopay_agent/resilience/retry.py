"""
Autopay Agent - Retry Logic with Exponential Backoff

Retry utilities with exponential backoff and jitter for transient oracle
failures. Callers still bound the whole retried call with a timeout.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 2)
        base_delay: Initial delay in seconds (default: 0.2)
        max_delay: Maximum delay in seconds (default: 2.0)
        exponential_base: Exponential backoff base (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: True)
        jitter_factor: Jitter randomization factor 0-1 (default: 0.1)
    """

    max_retries: int = 2
    base_delay: float = 0.2
    max_delay: float = 2.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")


def is_transient_error(error: Exception) -> bool:
    """
    Whether an oracle error is worth retrying.

    Transport failures (connection refused, reset) and 429/502/503/504 responses are.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(error, httpx.TransportError)


def exponential_backoff(
    attempt: int,
    base_delay: float = 0.2,
    exponential_base: float = 2.0,
    max_delay: float = 2.0,
    jitter: bool = True,
    jitter_factor: float = 0.1,
) -> float:
    """
    Calculate exponential backoff delay with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        exponential_base: Base for exponential calculation
        max_delay: Maximum delay cap
        jitter: Whether to add random jitter
        jitter_factor: Jitter randomization factor (0-1)

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)

    if jitter and jitter_factor > 0:
        jitter_amount = delay * jitter_factor
        delay = max(0.01, delay + random.uniform(-jitter_amount, jitter_amount))

    return delay


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    is_retryable: Callable[[Exception], bool] = is_transient_error,
    **kwargs: Any,
) -> T:
    """
    Execute an async function, retrying transient failures.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        config: Retry configuration (uses defaults if None)
        is_retryable: Predicate deciding whether an error is retried
        **kwargs: Keyword arguments for func

    Returns:
        Result of the first successful attempt

    Raises:
        The last exception once retries are exhausted, or any non-retryable exception
    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__name__", repr(func))
    attempt = 0
    while True:
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable(e):
                raise

            if attempt >= config.max_retries:
                logger.error(
                    f"All {config.max_retries} retries exhausted",
                    extra={"function": name, "error": str(e), "error_type": type(e).__name__},
                )
                raise

            delay = exponential_backoff(
                attempt=attempt,
                base_delay=config.base_delay,
                exponential_base=config.exponential_base,
                max_delay=config.max_delay,
                jitter=config.jitter,
                jitter_factor=config.jitter_factor,
            )
            logger.warning(
                f"Retry attempt {attempt + 1}/{config.max_retries} after {delay:.2f}s",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": config.max_retries,
                    "delay_seconds": delay,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "function": name,
                },
            )
            attempt += 1
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(f"Retry succeeded after {attempt} attempts", extra={"attempt": attempt, "function": name})
        return result
