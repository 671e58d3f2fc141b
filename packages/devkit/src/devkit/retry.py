from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay_seconds: float, max_delay_seconds: float | None = None) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base..."""
    delay = base_delay_seconds * (2 ** max(attempt - 1, 0))
    if max_delay_seconds is not None:
        return min(delay, max_delay_seconds)
    return delay


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    base_delay_seconds: float,
    should_retry: Callable[[Exception], bool] | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            attempt += 1
            if attempt >= max_retries:
                raise
            if should_retry is not None and not should_retry(exc):
                raise
            await sleep_fn(backoff_delay(attempt, base_delay_seconds))
