"""
Retry utilities for anvilkit.

Provides a bounded retry loop with optional exponential backoff and jitter.
With ``exponential_base=1.0`` and ``jitter=False`` the loop degenerates to a
fixed polling interval, which is how the node liveness probe uses it.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Example:
        ```python
        # Poll every 100ms for at most 10s
        config = RetryConfig(
            max_attempts=None,
            base_delay_ms=100,
            exponential_base=1.0,
            jitter=False,
            timeout_s=10.0,
            retryable_errors=(NodeNotReadyError,),
        )
        ```
    """

    max_attempts: Optional[int] = 3
    """Maximum number of attempts. None means unbounded; use ``timeout_s`` then."""

    base_delay_ms: int = 1000
    """Base delay in milliseconds between attempts."""

    max_delay_ms: int = 30000
    """Maximum delay in milliseconds (cap for exponential growth)."""

    jitter: bool = True
    """Whether to add random jitter to delays."""

    exponential_base: float = 2.0
    """Base for exponential backoff. 1.0 gives a fixed interval."""

    timeout_s: Optional[float] = None
    """Overall deadline for all attempts, including delays."""

    retryable_errors: Tuple[Type[BaseException], ...] = field(
        default_factory=lambda: (Exception,)
    )
    """Exception types that trigger another attempt."""

    def __post_init__(self) -> None:
        if self.max_attempts is None and self.timeout_s is None:
            raise ValueError("Unbounded retries require timeout_s")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        attempt: Zero-based attempt number (0 = first retry)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay_ms = config.base_delay_ms * (config.exponential_base ** attempt)
    delay_ms = min(delay_ms, config.max_delay_ms)

    if config.jitter:
        # Full jitter avoids synchronized retries
        delay_ms = random.uniform(0, delay_ms)

    return delay_ms / 1000


async def _attempt_loop(fn: Callable[[], Awaitable[T]], config: RetryConfig) -> T:
    last_error: Optional[BaseException] = None
    attempt = 0

    while config.max_attempts is None or attempt < config.max_attempts:
        try:
            return await fn()
        except config.retryable_errors as e:
            last_error = e

        attempt += 1
        if config.max_attempts is None or attempt < config.max_attempts:
            await asyncio.sleep(calculate_delay(attempt - 1, config))

    assert last_error is not None
    raise last_error


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Execute an async function with retry logic.

    Non-retryable exceptions propagate immediately. Cancellation of the
    caller cancels the pending attempt or sleep; nothing keeps running.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration (uses defaults if None)

    Returns:
        Result of the function

    Raises:
        asyncio.TimeoutError: If ``timeout_s`` elapsed first
        Last retryable exception if all attempts failed
    """
    config = config or RetryConfig()
    if config.timeout_s is None:
        return await _attempt_loop(fn, config)
    return await asyncio.wait_for(_attempt_loop(fn, config), timeout=config.timeout_s)
