"""
Bounded retry with exponential backoff for outbound calls.

Shared by the Claude client, the Google Calendar backend and the
notification service. Only errors the caller marks as transient are retried.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    is_transient: Callable[[BaseException], bool],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    description: str = "operation",
) -> T:
    """Run an async operation, retrying transient failures.

    Delays grow as base_delay * 2**attempt, capped at max_delay.

    Args:
        operation: Zero-argument coroutine factory
        is_transient: Predicate deciding whether an error is retried
        max_attempts: Total attempts including the first one
        base_delay: First retry delay in seconds
        max_delay: Upper bound for a single delay
        description: Used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last error when attempts are exhausted, or any non-transient error
    """
    attempts = max(1, max_attempts)

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e) or attempt == attempts - 1:
                raise
            wait_time = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                f"{description} failed ({e}), retrying in {wait_time:.2f}s "
                f"(attempt {attempt + 1}/{attempts})"
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError("unreachable")
