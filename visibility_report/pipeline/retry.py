"""Exponential-backoff retry for fallible async calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call *fn* until it succeeds, at most ``1 + max_retries`` times.

    Retry *n* (1-based) waits ``base_delay * 2**n`` seconds, so the default
    schedule is 1s, 2s, 4s. The last error is re-raised once the budget is
    spent. Errors outside *retry_on* propagate immediately.
    """
    retries = 0
    while True:
        try:
            return await fn()
        except retry_on as e:
            if retries >= max_retries:
                logger.error("Giving up after %d retries: %s", max_retries, e)
                raise
            retries += 1
            delay = base_delay * (2**retries)
            logger.warning("Retry %d/%d in %.1fs after error: %s", retries, max_retries, delay, e)
            await sleep(delay)
