from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from .config import program_options
from .process_types import (
    DEFAULT_MAX_BYTES,
    LogSource,
    ProcessInfo,
    ProcessState,
    RereadResult,
    StartStopAllResult,
    TailRequest,
)
from .tail import POLL_INTERVAL, OffsetReconciler, RpcSnapshotSource, TailSession

__all__ = ["ProcessManager", "Invoker"]

logger = logging.getLogger(__name__)


class Invoker(Protocol):
    async def invoke(self, method: str, *args: Any) -> Any: ...


class ProcessManager:  # noqa: D101
    def __init__(self, client: Invoker) -> None:
        self._client = client
        self._snapshots = RpcSnapshotSource(client.invoke)

    @property
    def client(self) -> Invoker:
        return self._client

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def info(self, name: str) -> ProcessInfo:
        reply = await self._client.invoke("supervisor.getProcessInfo", name)
        return ProcessInfo.from_reply(reply)

    async def all_info(self) -> list[ProcessInfo]:
        reply = await self._client.invoke("supervisor.getAllProcessInfo")
        return [ProcessInfo.from_reply(r) for r in reply or []]

    async def status(self, name: str) -> ProcessState:
        return (await self.info(name)).process_state

    # ------------------------------------------------------------------
    # Control helpers
    # ------------------------------------------------------------------

    async def start(self, name: str) -> bool:
        """Start *name* unless it is already running; ``True`` if a call was made."""
        state = await self.status(name)
        if state.is_active:
            logger.debug("event=start_skip name=%s state=%s", name, state.value)
            return False
        await self._client.invoke("supervisor.startProcess", name)
        logger.info("Process %s started", name)
        return True

    async def stop(self, name: str) -> bool:
        """Stop *name* if it is running; ``True`` if a call was made."""
        state = await self.status(name)
        if not state.is_active:
            logger.debug("event=stop_skip name=%s state=%s", name, state.value)
            return False
        await self._client.invoke("supervisor.stopProcess", name)
        logger.info("Process %s stopped", name)
        return True

    async def restart(self, name: str) -> None:
        await self.stop(name)
        await self.start(name)

    async def start_all(self) -> StartStopAllResult:
        reply = await self._client.invoke("supervisor.startAllProcesses")
        return StartStopAllResult.from_reply(reply)

    async def stop_all(self) -> StartStopAllResult:
        reply = await self._client.invoke("supervisor.stopAllProcesses")
        return StartStopAllResult.from_reply(reply)

    # ------------------------------------------------------------------
    # Configuration helpers
    # ------------------------------------------------------------------

    async def reread(self) -> RereadResult:
        reply = await self._client.invoke("supervisor.reloadConfig")
        return RereadResult.from_reply(reply)

    async def add(self, name: str) -> None:
        await self._client.invoke("supervisor.addProcessGroup", name)

    async def remove(self, name: str) -> None:
        await self.stop(name)
        await self._client.invoke("supervisor.removeProcessGroup", name)

    async def update(self) -> RereadResult:
        """Apply a reread: drop removed/changed groups, then add added/changed ones."""
        diff = await self.reread()
        logger.debug(
            "event=update added=%s changed=%s removed=%s",
            diff.added,
            diff.changed,
            diff.removed,
        )
        for name in diff.removed + diff.changed:
            await self.remove(name)
        for name in diff.added + diff.changed:
            await self.add(name)
        return diff

    def options(self, name: str, config_file: Path | str) -> dict[str, str]:
        return program_options(name, config_file)

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    async def snapshot(
        self,
        name: str,
        source: LogSource = LogSource.stdout,
        lines: int = 10,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> tuple[list[str], int]:
        """One-shot read of the last *lines* lines; returns ``(lines, end_offset)``."""
        snapshot = await self._snapshots.fetch(name, source, 0, max_bytes)
        if snapshot is None:
            return [], 0
        data = OffsetReconciler(lines).reconcile(snapshot)
        text = data.decode("utf-8", errors="replace")
        return text.splitlines(keepends=True), snapshot.end_offset

    async def tail(
        self,
        name: str,
        source: LogSource = LogSource.stdout,
        seed_lines: int = 10,
        max_bytes: int = DEFAULT_MAX_BYTES,
        interval: float = POLL_INTERVAL,
    ) -> TailSession:
        """Start following *name*'s log; raises ``NotFoundError`` for unknown names."""
        request = TailRequest(name, source, max_bytes, seed_lines)
        return await TailSession.start(
            self._snapshots, request, resolve=self.info, interval=interval
        )

    async def tail_stdout(self, name: str, seed_lines: int = 10, max_bytes: int = DEFAULT_MAX_BYTES) -> TailSession:
        return await self.tail(name, LogSource.stdout, seed_lines, max_bytes)

    async def tail_stderr(self, name: str, seed_lines: int = 10, max_bytes: int = DEFAULT_MAX_BYTES) -> TailSession:
        return await self.tail(name, LogSource.stderr, seed_lines, max_bytes)
