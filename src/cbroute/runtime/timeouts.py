"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/timeouts.py.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from typing import TypeVar

T = TypeVar("T")


async def await_with_timeout(awaitable: Awaitable[T], timeout_s: float | None) -> T:
    """Await value with optional timeout."""
    if timeout_s is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout_s)


def deadline_after(timeout_s: float | None) -> float | None:
    """Return a monotonic deadline, or None when unbounded."""
    if timeout_s is None:
        return None
    return time.monotonic() + timeout_s


def remaining_s(deadline: float | None) -> float | None:
    """Seconds left until `deadline`; raises `TimeoutError` once it has passed."""
    if deadline is None:
        return None
    left = deadline - time.monotonic()
    if left <= 0:
        raise TimeoutError("Request deadline exceeded")
    return left


async def iter_with_idle_timeout(
    stream: AsyncIterator[T],
    *,
    idle_timeout_s: float | None,
    deadline: float | None = None,
) -> AsyncIterator[T]:
    """
    Wrap stream iteration with per-item idle timeout and an overall deadline.

    Each wait is bounded by whichever limit is closer. Both raise
    `TimeoutError`, so callers route them through the transport failure path.
    """
    if idle_timeout_s is None and deadline is None:
        async for item in stream:
            yield item
        return

    while True:
        left = remaining_s(deadline)
        wait_s = idle_timeout_s if left is None else (
            left if idle_timeout_s is None else min(left, idle_timeout_s)
        )
        try:
            item = await asyncio.wait_for(anext(stream), timeout=wait_s)
        except StopAsyncIteration:
            return
        yield item
