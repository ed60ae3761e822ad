from __future__ import annotations

import asyncio
import logging
from collections import deque

__all__ = ["HandoffBuffer", "BufferClosedError"]

logger = logging.getLogger(__name__)


class BufferClosedError(Exception):
    """Raised to the writer when the buffer was closed under it."""

    def __init__(self, cause: BaseException | None = None) -> None:
        super().__init__(str(cause) if cause else "handoff buffer closed")
        self.cause = cause


class HandoffBuffer:
    """Single-writer / single-reader channel of byte chunks.

    ``write`` returns only once the reader has taken the chunk, so at most one
    undelivered chunk exists at any time.  ``close(error)`` wakes both sides:
    the reader drains what is left and then sees *error* raised (or ``b""``
    for a clean close), a blocked writer gets ``BufferClosedError``.
    """

    def __init__(self) -> None:
        self._chunks: deque[bytes] = deque()
        self._closed = False
        self._error: BaseException | None = None
        self._readable = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._chunks)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise BufferClosedError(self._error)
        if not data:
            return

        self._chunks.append(data)
        self._drained.clear()
        self._readable.set()

        while self._chunks:
            if self._closed:
                raise BufferClosedError(self._error)
            await self._drained.wait()

    async def read(self) -> bytes:
        """Return the next chunk, ``b""`` at clean end of stream.

        Suspends while the buffer is empty and still open.
        """
        while not self._chunks:
            if self._closed:
                if self._error is not None:
                    raise self._error
                return b""
            self._readable.clear()
            await self._readable.wait()

        data = self._chunks.popleft()
        if not self._chunks:
            self._drained.set()
        return data

    def close(self, error: BaseException | None = None) -> None:
        """Close the buffer; the first close wins, later calls are no-ops."""
        if self._closed:
            return
        logger.debug("event=handoff_close error=%r", error)
        self._closed = True
        self._error = error
        self._readable.set()
        self._drained.set()
