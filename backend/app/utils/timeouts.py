from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    attempts: int,
    delay: float,
    *,
    retry_if: Callable[[Exception], bool] | None = None,
    backoff: float = 2.0,
) -> T:
    """Await ``func`` up to ``attempts`` times.

    Exceptions rejected by ``retry_if`` are raised immediately. The delay
    grows by ``backoff`` after each failed attempt.
    """

    last_exc: Exception | None = None
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except Exception as exc:
            if retry_if is not None and not retry_if(exc):
                raise
            last_exc = exc
            if attempt < attempts:
                await asyncio.sleep(wait)
                wait *= backoff
    if last_exc is None:
        raise RuntimeError("retry_async failed without exception")
    raise last_exc
