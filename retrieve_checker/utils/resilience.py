"""Bounded retry for async network calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from retrieve_checker.utils.backoff import ExponentialBackoff

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff: ExponentialBackoff,
    should_retry: Callable[[Exception], bool] | None = None,
    on_failed_attempt: Callable[[Exception, int], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``func`` until it succeeds or the attempt budget is spent.

    Args:
        func: Zero-argument coroutine factory
        attempts: Maximum number of calls (at least 1)
        backoff: Delay schedule between calls
        should_retry: Predicate deciding whether an error is transient;
            errors it rejects propagate immediately
        on_failed_attempt: Called with the error and 1-based attempt number
            before each retry
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The first successful result

    Raises:
        The last error raised by ``func``; it is never wrapped.

    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except Exception as e:
            if attempt >= attempts:
                raise
            if should_retry is not None and not should_retry(e):
                raise
            if on_failed_attempt is not None:
                on_failed_attempt(e, attempt)
            delay = backoff.next_delay(attempt - 1)
            logger.debug("Attempt %d/%d failed, retrying in %.1fs", attempt, attempts, delay)
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
