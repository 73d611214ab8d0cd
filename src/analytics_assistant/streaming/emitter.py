"""
Stream emitter - ordered single-producer channel of stream frames.

Frames are delivered in emission order. The first terminal frame (complete
or error) ends the stream and anything emitted after it is dropped. When the
caller disconnects, close() drops every further frame.
"""

import asyncio
from typing import AsyncIterator

import structlog

from .events import EventType, StreamData, StreamEvent

logger = structlog.get_logger()

_END = object()


class StreamEmitter:
    """Queue-backed emitter consumed by the HTTP response."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._sequence = 0
        self._terminated = False
        self._closed = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, type: EventType, content: str, data: StreamData | None = None) -> bool:
        """Queue a frame. Returns False if the stream no longer accepts frames."""
        if self._terminated or self._closed:
            logger.debug("Dropping frame after stream end", type=type)
            return False

        self._sequence += 1
        event = StreamEvent(type=type, content=content, data=data, sequence=self._sequence)
        self._queue.put_nowait(event)

        if event.is_terminal:
            self._terminated = True
            self._queue.put_nowait(_END)
        return True

    def thinking(self, content: str) -> bool:
        return self.emit("thinking", content)

    def progress(self, content: str) -> bool:
        return self.emit("progress", content)

    def complete(self, content: str, data: StreamData | None = None) -> bool:
        return self.emit("complete", content, data)

    def error(self, content: str) -> bool:
        return self.emit("error", content)

    def close(self) -> None:
        """Stop accepting frames (caller went away). Idempotent."""
        if self._closed:
            return
        self._closed = True
        if not self._terminated:
            self._queue.put_nowait(_END)

    async def frames(self) -> AsyncIterator[StreamEvent]:
        """Yield frames until the stream ends."""
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item
