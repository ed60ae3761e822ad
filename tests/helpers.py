from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from supervisorrpc.process_manager import ProcessManager
from supervisorrpc.process_types import LogSource, Snapshot

__all__ = [
    "FakeClient",
    "FakeSnapshotSource",
    "GrowingLog",
    "SlowLog",
    "StalledLog",
    "opener_for",
    "process_info",
    "sequence",
    "snap",
]


def snap(text: str, end_offset: int, overflowed: bool = False) -> Snapshot:
    return Snapshot(text.encode("utf-8"), end_offset, overflowed)


def process_info(name: str, statename: str = "RUNNING", **extra: Any) -> dict[str, Any]:
    """A ``getProcessInfo`` reply as supervisord sends it."""
    reply = {"name": name, "group": name, "statename": statename, "state": 20, "pid": 4242}
    reply.update(extra)
    return reply


def sequence(*items: Any):
    """Reply with *items* in order, then keep repeating the last one."""
    remaining = list(items)

    def _next(*_args: Any) -> Any:
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return _next


class FakeClient:
    """Scripted stand-in for ``RpcClient``.

    ``replies`` maps an XML-RPC method name to a reply, an exception instance
    (raised) or a callable receiving the call's arguments.
    """

    def __init__(self, replies: dict[str, Any] | None = None) -> None:
        self.replies: dict[str, Any] = dict(replies or {})
        self.calls: list[tuple[Any, ...]] = []

    @property
    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def invoke(self, method: str, *args: Any) -> Any:
        self.calls.append((method, *args))
        if method not in self.replies:
            raise AssertionError(f"unexpected call {method}{args!r}")
        reply = self.replies[method]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(*args)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeSnapshotSource:
    """Hands out scripted snapshots (or raises scripted errors) in order.

    Once the script is exhausted it keeps reporting "no new data".
    """

    def __init__(self, *items: Snapshot | BaseException | None) -> None:
        self.items = list(items)
        self.calls: list[tuple[str, LogSource, int, int]] = []
        self._end = 0

    async def fetch(self, stream_name: str, source: LogSource, offset: int, max_bytes: int) -> Snapshot | None:
        self.calls.append((stream_name, source, offset, max_bytes))
        if not self.items:
            return Snapshot(b"", self._end)
        item = self.items.pop(0)
        if isinstance(item, BaseException):
            raise item
        if item is not None:
            self._end = item.end_offset
        return item


class GrowingLog:
    """Behaves like supervisord on a log that gains *line* before every poll."""

    def __init__(self, line: bytes = b"tick\n") -> None:
        self.line = line
        self.content = b""
        self.calls = 0

    async def fetch(self, stream_name: str, source: LogSource, offset: int, max_bytes: int) -> Snapshot:
        self.calls += 1
        self.content += self.line
        return Snapshot(self.content[-max_bytes:], len(self.content))


class SlowLog:
    """An idle log whose every fetch takes *delay* seconds; records when each began."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.started: list[float] = []

    async def fetch(self, stream_name: str, source: LogSource, offset: int, max_bytes: int) -> Snapshot:
        self.started.append(asyncio.get_running_loop().time())
        await asyncio.sleep(self.delay)
        return Snapshot(b"", 0)


class StalledLog:
    """A fetch that never returns."""

    def __init__(self) -> None:
        self.fetching = asyncio.Event()

    async def fetch(self, stream_name: str, source: LogSource, offset: int, max_bytes: int) -> Snapshot:
        self.fetching.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def opener_for(client: FakeClient):
    @contextlib.asynccontextmanager
    async def _open():
        yield ProcessManager(client)

    return _open
