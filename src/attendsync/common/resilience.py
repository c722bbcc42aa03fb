#!/usr/bin/env python3
"""Resilience Patterns for terminal and ledger calls.

This module provides the patterns the sync engine uses to cope with
intermittently reachable terminals:
    - Bounded retry with fixed or exponential delay
    - Per-call timeouts
    - Bounded concurrent processing

Example:
    # Up to 3 attempts, 2 seconds apart
    snapshot = await retry_async(
        fetch_snapshot,
        device,
        max_attempts=3,
        initial_delay=2.0,
        backoff_factor=1.0,
        jitter=False,
    )

    # At most 4 devices in flight
    results = await process_concurrent(devices, sync_one, max_concurrent=4)
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import ConnectError, ProtocolError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry
# ============================================

# Driver failures worth another immediate attempt
DEFAULT_RETRYABLE_EXCEPTIONS = (
    ConnectError,
    ProtocolError,
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs,
) -> T:
    """Retry an async function call.

    Non-retryable exceptions (and cancellation) propagate immediately.
    With backoff_factor=1.0 and jitter=False the delay is fixed.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_attempts: Maximum attempts, including the first
        backoff_factor: Delay multiplier between attempts
        initial_delay: Delay in seconds before the first retry
        max_delay: Maximum delay in seconds
        jitter: Randomize each delay between 50% and 150%
        retryable_exceptions: Exceptions to retry on
        on_retry: Optional callback called before each retry with (exception, attempt)
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            if attempt >= max_attempts:
                logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                raise

            actual_delay = min(delay, max_delay)
            if jitter:
                actual_delay = actual_delay * (0.5 + random.random())

            if on_retry:
                on_retry(e, attempt)

            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {actual_delay:.1f}s"
            )
            await asyncio.sleep(actual_delay)
            delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("Retry logic error")


# ============================================
# Timeouts
# ============================================

async def with_timeout(
    func: Callable[..., Awaitable[T]],
    timeout_seconds: float,
    *args,
    **kwargs,
) -> T:
    """Execute async function with timeout.

    Raises:
        asyncio.TimeoutError: If the call does not finish in time
    """
    return await asyncio.wait_for(
        func(*args, **kwargs),
        timeout=timeout_seconds,
    )


# ============================================
# Concurrent Processing
# ============================================

async def process_concurrent(
    items: list[T],
    processor: Callable[[T], Awaitable[Any]],
    max_concurrent: int = 10,
    return_exceptions: bool = False,
) -> list[Any]:
    """Process items concurrently with bounded concurrency.

    Uses a semaphore to limit the number of concurrent operations.

    Args:
        items: List of items to process
        processor: Async function to apply to each item
        max_concurrent: Maximum concurrent operations (default: 10)
        return_exceptions: If True, return exceptions instead of raising

    Returns:
        List of results in the same order as input items
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def bounded_processor(item: T) -> Any:
        async with semaphore:
            return await processor(item)

    tasks = [bounded_processor(item) for item in items]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


__all__ = [
    "retry_async",
    "DEFAULT_RETRYABLE_EXCEPTIONS",
    "with_timeout",
    "process_concurrent",
]
