"""Frame sources feeding a scan session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Protocol

from scanvote.engine.errors import FrameSourceUnavailableError

logger = logging.getLogger(__name__)

# Queued by close() to wake a consumer blocked on an empty queue.
_CLOSED = object()


class FrameSource(Protocol):
    """Protocol for anything that can deliver captured frames."""

    async def obtain_frame(self) -> object:
        """Return the next frame.

        Raises:
            FrameSourceUnavailableError: If frames can never be delivered
                (camera permission denied, device missing, source closed).
        """
        ...


class StillFrameSource:
    """Serves the same user-supplied still image for every frame."""

    def __init__(self, frame: object) -> None:
        self._frame = frame

    async def obtain_frame(self) -> object:
        return self._frame


class QueueFrameSource:
    """Frames pushed by a client (e.g. a browser posting camera captures)."""

    def __init__(self, maxsize: int = 16, timeout: float = 5.0) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._timeout = timeout
        self._closed = False

    def push(self, frame: object) -> None:
        """Enqueue a frame without waiting.

        Raises:
            FrameSourceUnavailableError: If the source has been closed.
            asyncio.QueueFull: If the consumer has fallen behind.
        """
        if self._closed:
            raise FrameSourceUnavailableError("Frame source is closed")
        self._queue.put_nowait(frame)

    async def obtain_frame(self) -> object:
        if self._closed:
            raise FrameSourceUnavailableError("Frame source is closed")
        try:
            frame = await asyncio.wait_for(self._queue.get(), timeout=self._timeout)
        except TimeoutError:
            raise TimeoutError(f"No frame received within {self._timeout:.1f}s") from None
        if frame is _CLOSED:
            raise FrameSourceUnavailableError("Frame source is closed")
        return frame

    def close(self) -> None:
        """Reject further frames and wake any consumer waiting for one."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return 0 if self._closed else self._queue.qsize()
