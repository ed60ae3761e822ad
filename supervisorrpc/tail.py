"""Turn supervisord's bounded log snapshots into a continuous line stream.

supervisord only answers "give me up to N bytes of this log ending at its
current end".  A ``TailSession`` polls that call once per tick, keeps only the
bytes that are new since the previous poll (``OffsetReconciler``), hands them
over to the consumer through a ``HandoffBuffer`` (``StreamPump``) and
re-assembles complete lines on the other side (``LineSplitter``).
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

from .errors import ProtocolError, SupervisorError, TailCancelled
from .handoff import BufferClosedError, HandoffBuffer
from .process_types import LogSource, Snapshot, TailRequest

__all__ = [
    "SnapshotSource",
    "RpcSnapshotSource",
    "ReconcilerState",
    "reconcile",
    "OffsetReconciler",
    "PumpState",
    "StreamPump",
    "ErrorLine",
    "LineSplitter",
    "TailSession",
]

logger = logging.getLogger(__name__)

# Seconds between two snapshot polls
POLL_INTERVAL = 1.0


# ---------------------------------------------------------------------------
# Snapshot source
# ---------------------------------------------------------------------------


class SnapshotSource(Protocol):
    async def fetch(
        self, stream_name: str, source: LogSource, offset: int, max_bytes: int
    ) -> Snapshot | None:
        """Return the window ending at the log's current end, or ``None`` to skip."""
        ...


class RpcSnapshotSource:
    """``SnapshotSource`` backed by ``supervisor.tailProcess{Stdout,Stderr}Log``."""

    def __init__(self, invoke: Callable[..., Awaitable[Any]]) -> None:
        self._invoke = invoke

    async def fetch(
        self, stream_name: str, source: LogSource, offset: int, max_bytes: int
    ) -> Snapshot | None:
        reply = await self._invoke(source.method, stream_name, offset, max_bytes)
        snapshot = Snapshot.from_reply(reply)
        if snapshot is None:
            logger.warning(
                "event=tail_skip name=%s reason=non_string_chunk reply=%r",
                stream_name,
                reply,
            )
        elif snapshot.overflowed:
            logger.debug("event=tail_overflow name=%s offset=%s", stream_name, offset)
        return snapshot


# ---------------------------------------------------------------------------
# Offset reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconcilerState:
    # None until the first snapshot has been seen; 0 is a real offset.
    last_offset: int | None = None
    seed_lines: int = 0

    @property
    def initialized(self) -> bool:
        return self.last_offset is not None


def _keep_last_lines(data: bytes, count: int) -> bytes:
    newlines = data.count(b"\n")
    if newlines <= count:
        return data
    return data.split(b"\n", newlines - count)[-1]


def reconcile(state: ReconcilerState, snapshot: Snapshot) -> tuple[bytes, ReconcilerState]:
    """Return the bytes of *snapshot* that are new relative to *state*.

    The first snapshot is trimmed to its last ``seed_lines`` lines.  Later
    snapshots contribute their last ``end_offset - last_offset`` bytes; a
    non-positive advance (no new data, truncation or rotation) yields nothing.
    """
    updated = replace(state, last_offset=snapshot.end_offset)

    if not state.initialized:
        return _keep_last_lines(snapshot.data, state.seed_lines), updated

    advance = snapshot.end_offset - state.last_offset
    if advance <= 0:
        if advance < 0:
            logger.info(
                "event=tail_shrink old_offset=%s new_offset=%s",
                state.last_offset,
                snapshot.end_offset,
            )
        return b"", updated

    if not snapshot.data:
        raise ProtocolError(
            f"log advanced by {advance} bytes but the snapshot is empty"
        )
    if advance > len(snapshot.data):
        logger.warning(
            "event=tail_gap lost=%d window=%d", advance - len(snapshot.data), len(snapshot.data)
        )
        return snapshot.data, updated
    return snapshot.data[-advance:], updated


class OffsetReconciler:
    """Mutable holder of a ``ReconcilerState``; owned by one poll loop."""

    def __init__(self, seed_lines: int = 0) -> None:
        self.state = ReconcilerState(seed_lines=seed_lines)

    @property
    def last_offset(self) -> int | None:
        return self.state.last_offset

    def reconcile(self, snapshot: Snapshot) -> bytes:
        delta, self.state = reconcile(self.state, snapshot)
        return delta


# ---------------------------------------------------------------------------
# Poll loop
# ---------------------------------------------------------------------------


class PumpState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DELIVERING = "delivering"
    CLOSED = "closed"


class StreamPump:
    """Polls a ``SnapshotSource`` once per tick and feeds new bytes to a buffer.

    The buffer is always closed when the loop ends: with the fetch error, with
    ``TailCancelled`` after ``cancel()``, or with the unexpected exception that
    broke the loop.
    """

    def __init__(
        self,
        source: SnapshotSource,
        request: TailRequest,
        buffer: HandoffBuffer,
        reconciler: OffsetReconciler | None = None,
        interval: float = POLL_INTERVAL,
    ) -> None:
        self.request = request
        self.state = PumpState.IDLE
        self.polls = 0
        self._source = source
        self._buffer = buffer
        self._reconciler = reconciler or OffsetReconciler(request.seed_lines)
        self._interval = interval
        self._cancel_evt = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_evt.is_set()

    def cancel(self) -> None:
        if self._cancel_evt.is_set():
            return
        logger.debug("event=tail_cancel name=%s", self.request.stream_name)
        self._cancel_evt.set()
        # Wakes a writer blocked on a consumer that stopped reading.
        self._buffer.close(TailCancelled())

    def _next_tick(self, previous: float, now: float) -> float:
        """First tick of the fixed schedule after *now*; overrun ticks are dropped."""
        if self._interval <= 0:
            return now
        missed = int((now - previous) // self._interval)
        if missed:
            logger.debug("event=tail_tick_skip name=%s missed=%d", self.request.stream_name, missed)
        return previous + (missed + 1) * self._interval

    async def _wait_until(self, deadline: float) -> bool:
        """Sleep until *deadline* (loop time); ``False`` if cancelled meanwhile."""
        delay = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            await asyncio.wait_for(self._cancel_evt.wait(), delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def _poll_once(self) -> None:
        self.state = PumpState.POLLING
        self.polls += 1
        offset = self._reconciler.last_offset or 0
        snapshot = await self._source.fetch(
            self.request.stream_name,
            self.request.source,
            offset,
            self.request.max_bytes_per_poll,
        )
        if snapshot is None:
            self.state = PumpState.IDLE
            return

        delta = self._reconciler.reconcile(snapshot)
        logger.debug(
            "event=tail_poll name=%s offset=%s end=%s delta=%d",
            self.request.stream_name,
            offset,
            snapshot.end_offset,
            len(delta),
        )
        if delta:
            self.state = PumpState.DELIVERING
            await self._buffer.write(delta)
        self.state = PumpState.IDLE

    async def run(self) -> None:
        error: BaseException | None = None
        loop = asyncio.get_running_loop()
        tick = loop.time()
        try:
            while not self.cancelled:
                if not await self._wait_until(tick):
                    break
                if self.cancelled:
                    break
                await self._poll_once()
                tick = self._next_tick(tick, loop.time())
        except BufferClosedError:
            pass
        except SupervisorError as exc:
            logger.info("event=tail_error name=%s error=%s", self.request.stream_name, exc)
            error = exc
        except asyncio.CancelledError:
            error = TailCancelled()
            raise
        except Exception as exc:  # pragma: no cover – safety net
            logger.exception("Unexpected error while tailing %s", self.request.stream_name)
            error = exc
        finally:
            self.state = PumpState.CLOSED
            if error is None:
                error = TailCancelled()
            self._buffer.close(error)
            logger.debug("event=tail_pump_exit name=%s polls=%d", self.request.stream_name, self.polls)


# ---------------------------------------------------------------------------
# Line splitting
# ---------------------------------------------------------------------------


class ErrorLine(str):
    """Terminal entry of a tail: the description of the error that ended it."""

    error: BaseException

    def __new__(cls, error: BaseException) -> "ErrorLine":
        line = super().__new__(cls, str(error) or type(error).__name__)
        line.error = error
        return line

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, TailCancelled)


class LineSplitter:
    """Read byte chunks off a ``HandoffBuffer`` and yield complete lines.

    Lines keep their ``\\n``.  A clean close flushes a trailing partial line; an
    error close drops it and yields a single ``ErrorLine`` instead.
    """

    def __init__(self, buffer: HandoffBuffer, encoding: str = "utf-8") -> None:
        self._buffer = buffer
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def __aiter__(self) -> AsyncIterator[str]:
        return self._lines()

    async def _lines(self) -> AsyncIterator[str]:
        partial = ""
        while True:
            try:
                chunk = await self._buffer.read()
            except Exception as exc:
                yield ErrorLine(exc)
                return

            if not chunk:
                partial += self._decoder.decode(b"", final=True)
                if partial:
                    yield partial
                return

            partial += self._decoder.decode(chunk)
            *complete, partial = partial.split("\n")
            for line in complete:
                yield line + "\n"


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TailSession:
    """A running tail: iterate it for lines, ``cancel()`` to stop it.

    Use ``await TailSession.start(...)`` to create one, preferably as
    ``async with``: leaving the block cancels the poll loop even when the
    iteration was abandoned half way.
    """

    def __init__(
        self,
        request: TailRequest,
        pump: StreamPump,
        splitter: LineSplitter,
        task: asyncio.Task,
    ) -> None:
        self.request = request
        self._pump = pump
        self._splitter = splitter
        self._task = task
        self._lines = splitter.__aiter__()

    @classmethod
    async def start(
        cls,
        source: SnapshotSource,
        request: TailRequest,
        *,
        resolve: Callable[[str], Awaitable[Any]] | None = None,
        interval: float = POLL_INTERVAL,
    ) -> "TailSession":
        if resolve is not None:
            # NotFoundError propagates before anything is polled.
            await resolve(request.stream_name)

        buffer = HandoffBuffer()
        pump = StreamPump(source, request, buffer, interval=interval)
        task = asyncio.create_task(pump.run(), name=f"tail:{request.stream_name}")
        logger.debug(
            "event=tail_start name=%s source=%s seed=%d bytes=%d",
            request.stream_name,
            request.source.value,
            request.seed_lines,
            request.max_bytes_per_poll,
        )
        return cls(request, pump, LineSplitter(buffer), task)

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def pump(self) -> StreamPump:
        return self._pump

    def cancel(self) -> None:
        self._pump.cancel()

    def __aiter__(self) -> "TailSession":
        return self

    async def __anext__(self) -> str:
        return await self._lines.__anext__()

    async def aclose(self) -> None:
        """Cancel and wait for the poll task to finish its in-flight call."""
        self.cancel()
        try:
            # asyncio.wait leaves our own cancellation free to propagate
            await asyncio.wait({self._task})
        except asyncio.CancelledError:
            self._task.cancel()
            raise
        await self._lines.aclose()

    async def __aenter__(self) -> "TailSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
