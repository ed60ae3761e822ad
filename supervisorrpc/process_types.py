from __future__ import annotations

"""Shared dataclasses used by *supervisorrpc* components.

Having these types in a dedicated module avoids circular imports between
``process_manager``, ``tail`` and ``tools``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

from .errors import ProtocolError

__all__ = [
    "LogSource",
    "ProcessState",
    "DEFAULT_MAX_BYTES",
    "TailRequest",
    "Snapshot",
    "ProcessInfo",
    "StartStopResult",
    "StartStopAllResult",
    "RereadResult",
    "DaemonState",
    "ListProcessesResult",
    "ActionResult",
    "TailOutputResult",
]

DEFAULT_MAX_BYTES = 8 * 1024

# supervisord's SupervisorFaults.SUCCESS
_SUCCESS_STATUS = 80


class LogSource(str, Enum):
    stdout = "stdout"
    stderr = "stderr"

    @property
    def method(self) -> str:
        """XML-RPC method used to fetch a snapshot of this log."""
        if self is LogSource.stderr:
            return "supervisor.tailProcessStderrLog"
        return "supervisor.tailProcessStdoutLog"


class ProcessState(str, Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    BACKOFF = "BACKOFF"
    STOPPING = "STOPPING"
    EXITED = "EXITED"
    FATAL = "FATAL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, name: str) -> "ProcessState":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_active(self) -> bool:
        return self in (ProcessState.RUNNING, ProcessState.STARTING)


@dataclass(frozen=True)
class TailRequest:
    stream_name: str
    source: LogSource = LogSource.stdout
    max_bytes_per_poll: int = DEFAULT_MAX_BYTES
    seed_lines: int = 10

    def __post_init__(self) -> None:
        if self.max_bytes_per_poll <= 0:
            object.__setattr__(self, "max_bytes_per_poll", DEFAULT_MAX_BYTES)
        if self.seed_lines < 0:
            raise ValueError("seed_lines must not be negative")


@dataclass(frozen=True)
class Snapshot:
    """A window of a remote log; *data* ends at absolute byte *end_offset*."""

    data: bytes
    end_offset: int
    overflowed: bool = False

    @classmethod
    def from_reply(cls, reply: Any) -> "Snapshot | None":
        """Build a snapshot from a ``tailProcess*Log`` reply.

        Returns ``None`` when the chunk is absent or not a string; that tick is
        skipped by the caller.  Any other shape problem is a ``ProtocolError``.
        """
        if not isinstance(reply, (list, tuple)) or len(reply) < 2:
            raise ProtocolError(f"unexpected tail reply: {reply!r}")
        chunk, end_offset = reply[0], reply[1]
        if isinstance(end_offset, bool) or not isinstance(end_offset, int):
            raise ProtocolError(f"tail reply offset is not an integer: {end_offset!r}")
        if not isinstance(chunk, str):
            return None
        overflowed = bool(reply[2]) if len(reply) > 2 else False
        return cls(chunk.encode("utf-8"), end_offset, overflowed)


@dataclass
class ProcessInfo:
    name: str
    group: str = ""
    description: str = ""
    start: int = 0
    stop: int = 0
    now: int = 0
    state: int = 0
    statename: str = ProcessState.UNKNOWN.value
    spawnerr: str = ""
    exitstatus: int = 0
    logfile: str = ""
    stdout_logfile: str = ""
    stderr_logfile: str = ""
    pid: int = 0

    @classmethod
    def from_reply(cls, reply: Any) -> "ProcessInfo":
        if not isinstance(reply, dict) or "name" not in reply:
            raise ProtocolError(f"unexpected process info: {reply!r}")
        known = {k: v for k, v in reply.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @property
    def process_state(self) -> ProcessState:
        return ProcessState.parse(self.statename)


@dataclass
class StartStopResult:
    name: str
    group: str
    status: int
    description: str = ""

    @property
    def success(self) -> bool:
        return self.status == _SUCCESS_STATUS


@dataclass
class StartStopAllResult:
    results: List[StartStopResult] = field(default_factory=list)

    @property
    def all_success(self) -> bool:
        return all(r.success for r in self.results)

    @classmethod
    def from_reply(cls, reply: Any) -> "StartStopAllResult":
        if not isinstance(reply, list):
            raise ProtocolError(f"unexpected start/stop reply: {reply!r}")
        return cls(
            [
                StartStopResult(
                    name=r.get("name", ""),
                    group=r.get("group", ""),
                    status=r.get("status", 0),
                    description=r.get("description", ""),
                )
                for r in reply
            ]
        )


@dataclass
class RereadResult:
    added: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @classmethod
    def from_reply(cls, reply: Any) -> "RereadResult":
        # reloadConfig answers [[added, changed, removed]]
        try:
            added, changed, removed = reply[0]
        except (TypeError, ValueError, IndexError) as exc:
            raise ProtocolError(f"unexpected reloadConfig reply: {reply!r}") from exc
        return cls(list(added), list(changed), list(removed))


@dataclass
class DaemonState:
    statecode: int
    statename: str


# ---------------------------------------------------------------------------
# Tool results (JSON-serialised by the CLI and the MCP server)
# ---------------------------------------------------------------------------


@dataclass
class ListProcessesResult:
    processes: List[ProcessInfo] = field(default_factory=list)
    error: str | None = None


@dataclass
class ActionResult:
    """Outcome of a control call; *detail* carries call specific data."""

    ok: bool = False
    detail: Any = None
    error: str | None = None


@dataclass
class TailOutputResult:
    lines: List[str] = field(default_factory=list)
    end_offset: int | None = None
    error: str | None = None
