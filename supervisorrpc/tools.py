import abc
import asyncio
import logging
from argparse import ArgumentParser, Namespace
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from pathlib import Path
from typing import Any

from fastmcp import FastMCP
from fastmcp.tools import FunctionTool

from .config import DEFAULT_CONFIG_FILE, ConnectionOptions, program_options
from .console import print_json, print_line, print_rule
from .daemon import DaemonControl
from .errors import SupervisorError
from .logging_utils import CLI_LOGGER
from .process_manager import ProcessManager
from .process_types import (
    DEFAULT_MAX_BYTES,
    ActionResult,
    ListProcessesResult,
    LogSource,
    TailOutputResult,
)
from .tail import POLL_INTERVAL, ErrorLine

logger = logging.getLogger(__name__)

Opener = Callable[[], AbstractAsyncContextManager[ProcessManager]]


def make_opener(options: ConnectionOptions) -> Opener:
    from .client import open_process_manager

    return lambda: open_process_manager(options)


class ITool(abc.ABC):
    """Abstract base class for a supervisorrpc tool.

    A tool is one supervisord operation exposed twice: as an MCP tool and as
    a CLI sub-command.  Both surfaces go through :py:meth:`run`, which turns
    ``SupervisorError`` into the ``error`` field of the result.
    """

    result_type: type = ActionResult

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """The name of the tool."""
        ...

    @property
    @abc.abstractmethod
    def description(self) -> str:
        """The description of the tool."""
        ...

    @abc.abstractmethod
    async def _apply(self, process_manager: ProcessManager, **kwargs: Any) -> Any:
        """Perform the call against supervisord."""
        ...

    @abc.abstractmethod
    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        """Register the tool with the MCP server."""
        ...

    @abc.abstractmethod
    def build_subparser(self, parser: ArgumentParser) -> None:
        """Configure the CLI subparser for the tool."""
        ...

    @abc.abstractmethod
    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        """Map parsed CLI arguments to ``_apply`` keyword arguments."""
        ...

    async def run(self, opener: Opener, **kwargs: Any) -> Any:
        logger.debug("%s called with %s", self.name, kwargs)
        try:
            async with opener() as process_manager:
                return await self._apply(process_manager, **kwargs)
        except SupervisorError as exc:
            logger.debug("event=tool_error tool=%s error=%s", self.name, exc)
            return self.result_type(error=str(exc))

    def call_with_args(self, args: Namespace, opener: Opener) -> int:
        """Execute the tool's CLI command; returns the process exit code."""
        result = asyncio.run(self.run(opener, **self.payload_from_args(args)))
        print_json(result)
        if result.error:
            CLI_LOGGER.error(result.error)
            return 1
        return 0


def _add_name_argument(parser: ArgumentParser, help: str) -> None:
    parser.add_argument("process_name", metavar="NAME", help=help)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class StatusTool(ITool):
    """Tool to get the state of one or all processes."""

    name = "status"
    description = "Get the state of a supervisord process, or of all processes when no name is given."
    result_type = ListProcessesResult

    async def _apply(self, process_manager: ProcessManager, name: str | None = None) -> ListProcessesResult:
        if name:
            return ListProcessesResult(processes=[await process_manager.info(name)])
        return ListProcessesResult(processes=await process_manager.all_info())

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def status(name: str | None = None) -> ListProcessesResult:
            return await self.run(opener, name=name)

        mcp.add_tool(FunctionTool.from_function(status, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        parser.add_argument("process_name", metavar="NAME", nargs="?", help="Process name (default: all).")

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        return {"name": args.process_name}


class DaemonStateTool(ITool):
    """Tool to report supervisord's own state and versions."""

    name = "daemon_state"
    description = "Get supervisord's state, API version and version."

    async def _apply(self, process_manager: ProcessManager) -> ActionResult:
        daemon = DaemonControl(process_manager.client)
        state = await daemon.state()
        return ActionResult(
            ok=True,
            detail={
                "state": state,
                "api_version": await daemon.api_version(),
                "supervisord_version": await daemon.supervisord_version(),
            },
        )

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def daemon_state() -> ActionResult:
            return await self.run(opener)

        mcp.add_tool(FunctionTool.from_function(daemon_state, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        pass

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        return {}


# ---------------------------------------------------------------------------
# Per-process control
# ---------------------------------------------------------------------------


class _NamedActionTool(ITool):
    """A control call taking a single process or group name."""

    async def _apply(self, process_manager: ProcessManager, name: str) -> ActionResult:
        called = await self._call(process_manager, name)
        return ActionResult(ok=True, detail={"name": name, "called": called})

    @abc.abstractmethod
    async def _call(self, process_manager: ProcessManager, name: str) -> bool:
        ...

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def action(name: str) -> ActionResult:
            return await self.run(opener, name=name)

        mcp.add_tool(FunctionTool.from_function(action, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        _add_name_argument(parser, "The process or group name.")

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        return {"name": args.process_name}


class StartProcessTool(_NamedActionTool):
    name = "start"
    description = "Start a process unless it is already RUNNING or STARTING."

    async def _call(self, process_manager: ProcessManager, name: str) -> bool:
        return await process_manager.start(name)


class StopProcessTool(_NamedActionTool):
    name = "stop"
    description = "Stop a process if it is RUNNING or STARTING."

    async def _call(self, process_manager: ProcessManager, name: str) -> bool:
        return await process_manager.stop(name)


class RestartProcessTool(_NamedActionTool):
    name = "restart"
    description = "Stop a process, then start it again."

    async def _call(self, process_manager: ProcessManager, name: str) -> bool:
        await process_manager.restart(name)
        return True


class AddGroupTool(_NamedActionTool):
    name = "add"
    description = "Activate a process group added to the configuration (after reread)."

    async def _call(self, process_manager: ProcessManager, name: str) -> bool:
        await process_manager.add(name)
        return True


class RemoveGroupTool(_NamedActionTool):
    name = "remove"
    description = "Stop and remove a process group from the active configuration."

    async def _call(self, process_manager: ProcessManager, name: str) -> bool:
        await process_manager.remove(name)
        return True


# ---------------------------------------------------------------------------
# Bulk control
# ---------------------------------------------------------------------------


class _BulkTool(ITool):
    async def _apply(self, process_manager: ProcessManager) -> ActionResult:
        res = await self._call(process_manager)
        return ActionResult(ok=res.all_success, detail=res.results)

    @abc.abstractmethod
    async def _call(self, process_manager: ProcessManager):
        ...

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def bulk() -> ActionResult:
            return await self.run(opener)

        mcp.add_tool(FunctionTool.from_function(bulk, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        pass

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        return {}


class StartAllTool(_BulkTool):
    name = "start_all"
    description = "Start every process; ok is true only if all of them started."

    async def _call(self, process_manager: ProcessManager):
        return await process_manager.start_all()


class StopAllTool(_BulkTool):
    name = "stop_all"
    description = "Stop every process; ok is true only if all of them stopped."

    async def _call(self, process_manager: ProcessManager):
        return await process_manager.stop_all()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RereadTool(ITool):
    name = "reread"
    description = "Reload supervisord's configuration and report added, changed and removed groups."

    async def _apply(self, process_manager: ProcessManager) -> ActionResult:
        return ActionResult(ok=True, detail=await process_manager.reread())

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def reread() -> ActionResult:
            return await self.run(opener)

        mcp.add_tool(FunctionTool.from_function(reread, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        pass

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        return {}


class UpdateTool(RereadTool):
    name = "update"
    description = "Reread the configuration, then remove and add groups so the changes take effect."

    async def _apply(self, process_manager: ProcessManager) -> ActionResult:
        return ActionResult(ok=True, detail=await process_manager.update())

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def update() -> ActionResult:
            return await self.run(opener)

        mcp.add_tool(FunctionTool.from_function(update, name=self.name, description=self.description))


class ProgramOptionsTool(ITool):
    """Reads ``[program:NAME]`` locally; no supervisord connection is made."""

    name = "options"
    description = "Show the raw options of a [program:NAME] section of a supervisord config file."

    def __init__(self, config_file: Path | str | None = None) -> None:
        # the file the connection was configured from, when there is one
        self.config_file = Path(config_file or DEFAULT_CONFIG_FILE)

    async def _apply(self, process_manager: ProcessManager | None, name: str, config_file: str) -> ActionResult:
        return ActionResult(ok=True, detail=program_options(name, config_file))

    async def run(self, opener: Opener, **kwargs: Any) -> ActionResult:
        try:
            return await self._apply(None, **kwargs)
        except SupervisorError as exc:
            return ActionResult(error=str(exc))

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def options(name: str, config_file: str = str(self.config_file)) -> ActionResult:
            return await self.run(opener, name=name, config_file=config_file)

        mcp.add_tool(FunctionTool.from_function(options, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        _add_name_argument(parser, "The program name.")
        parser.add_argument(
            "--program-config",
            type=Path,
            help="Config file holding the program section (default: the --config file).",
        )

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        config_file = args.program_config or getattr(args, "config", None) or self.config_file
        return {"name": args.process_name, "config_file": str(config_file)}


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


async def follow_log(
    opener: Opener,
    name: str,
    source: LogSource,
    lines: int,
    max_bytes: int,
    emit: Callable[[str], None] = print_line,
    interval: float = POLL_INTERVAL,
) -> int:
    """Stream *name*'s log through *emit* until the tail ends; returns an exit code."""
    async with opener() as process_manager:
        session = await process_manager.tail(name, source, lines, max_bytes, interval)
        async with session:
            async for line in session:
                if isinstance(line, ErrorLine):
                    if line.cancelled:
                        return 0
                    CLI_LOGGER.error("Tail of %s ended: %s", name, line)
                    return 1
                emit(line)
    return 0


class TailLogTool(ITool):
    """Tool to read (or, on the CLI, follow) a process log."""

    name = "tail"
    description = "Return the last lines of a process's stdout or stderr log."
    result_type = TailOutputResult

    async def _apply(
        self,
        process_manager: ProcessManager,
        name: str,
        stream: LogSource = LogSource.stdout,
        lines: int = 10,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> TailOutputResult:
        output, end_offset = await process_manager.snapshot(name, LogSource(stream), lines, max_bytes)
        return TailOutputResult(lines=output, end_offset=end_offset)

    def register_tool(self, opener: Opener, mcp: FastMCP) -> None:
        async def tail(
            name: str,
            stream: LogSource = LogSource.stdout,
            lines: int = 10,
            max_bytes: int = DEFAULT_MAX_BYTES,
        ) -> TailOutputResult:
            return await self.run(opener, name=name, stream=stream, lines=lines, max_bytes=max_bytes)

        mcp.add_tool(FunctionTool.from_function(tail, name=self.name, description=self.description))

    def build_subparser(self, parser: ArgumentParser) -> None:
        _add_name_argument(parser, "The process name.")
        parser.add_argument(
            "--stderr",
            action="store_const",
            const=LogSource.stderr,
            default=LogSource.stdout,
            dest="stream",
            help="Read the stderr log instead of stdout.",
        )
        parser.add_argument("-n", "--lines", type=int, default=10, help="Number of lines to show first.")
        parser.add_argument(
            "--bytes",
            type=int,
            default=DEFAULT_MAX_BYTES,
            dest="max_bytes",
            help="Size of the window fetched per poll.",
        )
        parser.add_argument(
            "-f",
            "--follow",
            action="store_true",
            help="Keep printing new lines until interrupted with Ctrl+C.",
        )

    def payload_from_args(self, args: Namespace) -> dict[str, Any]:
        return {
            "name": args.process_name,
            "stream": args.stream,
            "lines": args.lines,
            "max_bytes": args.max_bytes,
        }

    def call_with_args(self, args: Namespace, opener: Opener) -> int:
        if not args.follow:
            return super().call_with_args(args, opener)

        payload = self.payload_from_args(args)
        print_rule(f"{payload['name']} {payload['stream'].value}")
        try:
            return asyncio.run(
                follow_log(
                    opener,
                    payload["name"],
                    payload["stream"],
                    payload["lines"],
                    payload["max_bytes"],
                )
            )
        except KeyboardInterrupt:
            CLI_LOGGER.info("--- Detached from log tail ---")
            return 0
        except SupervisorError as exc:
            CLI_LOGGER.error(str(exc))
            return 1


ALL_TOOL_CLASSES = [
    StatusTool,
    DaemonStateTool,
    StartProcessTool,
    StopProcessTool,
    RestartProcessTool,
    StartAllTool,
    StopAllTool,
    RereadTool,
    UpdateTool,
    AddGroupTool,
    RemoveGroupTool,
    ProgramOptionsTool,
    TailLogTool,
]


def get_tools(config_file: Path | str | None = None) -> list[ITool]:
    """One instance of every tool; *config_file* is the default for ``options``."""
    return [
        ProgramOptionsTool(config_file) if tool_cls is ProgramOptionsTool else tool_cls()
        for tool_cls in ALL_TOOL_CLASSES
    ]
