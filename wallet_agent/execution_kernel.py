"""Shared async retry primitive for tool execution."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


def exponential_delay(attempt: int, base_delay: float) -> float:
    """``base_delay * 2**attempt``. No jitter: retry timing is part of the tool contract."""
    return base_delay * (2 ** attempt)


async def run_async_with_retry(
    *,
    caller: str,
    max_retries: int,
    invoke: Callable[[int], Awaitable[T]],
    should_retry: Callable[[Exception], bool],
    compute_delay: Callable[[int, Exception], float],
    logger: logging.Logger,
    on_error: Callable[[Exception, int], None] | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Execute async attempts, retrying while ``should_retry`` allows and budget remains.

    ``on_retry(attempt, exc, delay)`` fires before each backoff sleep. The last
    exception is re-raised once retries are exhausted or the error isn't retryable.
    """
    for attempt in range(max_retries + 1):
        try:
            return await invoke(attempt)
        except Exception as exc:
            if on_error is not None:
                on_error(exc, attempt)
            if not should_retry(exc) or attempt >= max_retries:
                raise

            delay = compute_delay(attempt, exc)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            logger.warning(
                "%s attempt %d/%d failed (retrying in %.1fs): %s",
                caller,
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            await sleep(delay)

    raise RuntimeError("run_async_with_retry exhausted without returning")
