"""Explicit poll-with-timeout helpers.

Every wait in the browser layer goes through :func:`poll_until` so the
interval and the deadline are visible at the call site, and tests can pass
a fake clock and sleep instead of waiting for real.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


async def poll_until(
    check: Callable[[], Awaitable[T | None]],
    *,
    timeout_ms: int,
    interval_ms: int,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> T | None:
    """Call *check* until it returns a result or the timeout elapses.

    ``None`` and ``False`` mean "keep waiting"; any other value, including
    ``0``, is a result. The check always runs at least once, even with
    ``timeout_ms=0``.

    Args:
        check: Async callable returning a result, or ``None``/``False`` to keep waiting.
        timeout_ms: Overall budget in milliseconds.
        interval_ms: Pause between checks in milliseconds.
        clock: Monotonic clock in seconds.
        sleep: Async sleep taking seconds.

    Returns:
        The first check result, or ``None`` on timeout.
    """
    deadline = clock() + timeout_ms / 1000
    while True:
        result = await check()
        if result is not None and result is not False:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        await sleep(min(interval_ms / 1000, remaining))
