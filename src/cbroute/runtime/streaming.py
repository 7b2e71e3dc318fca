"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/streaming.py.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import cast

from ..types import StreamEvent

_STREAM_END = object()

Emit = Callable[[StreamEvent], Awaitable[None]]
Producer = Callable[[Emit], Awaitable[None]]


class ChunkStream:
    """
    Single-consumer stream handle over a bounded channel.

    The producer runs in its own task and awaits `emit` for every event. The
    channel holds at most `channel_size` events, so a slow consumer suspends
    the producer (and with it the upstream read) instead of buffering.
    """

    def __init__(self, *, producer: Producer, channel_size: int = 16) -> None:
        self._producer = producer
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max(1, channel_size))
        self._done = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._error: BaseException | None = None
        self._first: object = None
        self._primed = False
        self._cancelled = False
        self._consumed = False

    def _ensure_started(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def _emit(self, event: StreamEvent) -> None:
        await self._queue.put(event)

    async def _pump(self) -> None:
        try:
            await self._producer(self._emit)
        except asyncio.CancelledError:
            self._cancelled = True
        except Exception as error:
            self._error = error
        finally:
            if self._cancelled:
                # Consumer is gone; unread events are dropped.
                while not self._queue.empty():
                    self._queue.get_nowait()
                self._queue.put_nowait(_STREAM_END)
            else:
                if self._error is not None:
                    await self._queue.put(self._error)
                await self._queue.put(_STREAM_END)
            self._done.set()

    async def first(self) -> StreamEvent | None:
        """
        Wait for the first event without consuming it.

        Raises the producer's error when it fails before emitting anything.
        Returns None when the stream ended empty.
        """
        self._ensure_started()
        if not self._primed:
            self._first = await self._queue.get()
            self._primed = True
        item = self._first
        if item is _STREAM_END:
            return None
        if isinstance(item, Exception):
            raise item
        return cast(StreamEvent, item)

    async def _iter_events(self) -> AsyncIterator[StreamEvent]:
        self._ensure_started()
        if self._primed:
            item = self._first
            self._first = None
        else:
            item = await self._queue.get()
        while item is not _STREAM_END:
            if isinstance(item, Exception):
                raise item
            yield cast(StreamEvent, item)
            item = await self._queue.get()

    @property
    def events(self) -> AsyncIterator[StreamEvent]:
        if self._consumed:
            raise RuntimeError("ChunkStream supports only one events consumer")
        self._consumed = True
        return self._iter_events()

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def cancel(self) -> None:
        """Cancel the producer and wait until it has finished its cleanup."""
        if self._task is None:
            return
        if not self._task.done():
            self._cancelled = True
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def wait_closed(self) -> None:
        self._ensure_started()
        await self._done.wait()
