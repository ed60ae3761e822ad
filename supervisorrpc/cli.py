from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from .config import ENV_CONFIG, ConnectionOptions
from .logging_utils import CLI_LOGGER_NAME, setup_logging
from .serve import serve
from .tools import ITool, get_tools, make_opener

ENV_PORT = "SUPERVISORRPC_PORT"
ENV_DATA_DIR = "SUPERVISORRPC_DATA_DIR"

logger = logging.getLogger(__name__)


def get_default_data_dir() -> Path:
    """Return default data directory, honouring *SUPERVISORRPC_DATA_DIR*."""

    if ENV_DATA_DIR in os.environ and os.environ[ENV_DATA_DIR]:
        return Path(os.environ[ENV_DATA_DIR]).expanduser().resolve()

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "supervisorrpc"
    elif sys.platform.startswith("linux"):
        return (
            Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
            / "supervisorrpc"
        )
    return Path.home() / ".supervisorrpc"


def get_default_port() -> int:
    """Return default port, honouring *SUPERVISORRPC_PORT*."""

    if ENV_PORT in os.environ:
        try:
            return int(os.environ[ENV_PORT])
        except ValueError:
            pass  # fall through to hard-coded default

    return 8948


@dataclass
class ServeAction:
    port: int
    options: ConnectionOptions
    verbose: int

    def run(self) -> int:
        return serve(self.port, self.options)


@dataclass
class ToolAction:
    tool: ITool
    args: argparse.Namespace
    options: ConnectionOptions

    def run(self) -> int:
        return self.tool.call_with_args(self.args, make_opener(self.options))


def _add_common_args(parser: argparse.ArgumentParser, suppress: bool = False) -> None:
    # Sub-parsers use SUPPRESS so flags given before the sub-command survive.
    def default(value):
        return argparse.SUPPRESS if suppress else value

    parser.add_argument("--config", type=Path, default=default(None), help="supervisord config file to discover endpoints from.")
    parser.add_argument("--url", default=default(""), help="inet_http_server address, e.g. 127.0.0.1:9001.")
    parser.add_argument("--socket", default=default(""), help="Path of supervisord's unix socket.")
    parser.add_argument("--username", default=default(""))
    parser.add_argument("--password", default=default(""))
    parser.add_argument("--data-dir", type=Path, default=default(get_default_data_dir()))
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=default(0),
        help="Increase verbosity; you can use -vv for more",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=-1,
        dest="verbose",
        default=default(0),
        help="Only show warnings and errors",
    )


def options_from_args(args: argparse.Namespace) -> ConnectionOptions:
    """Environment first, then command line flags on top."""
    opts = ConnectionOptions.from_env()
    if args.config:
        opts.config_file = args.config
    elif args.url or args.socket:
        # explicit endpoints given: do not fall back to /etc/supervisord.conf
        if not os.environ.get(ENV_CONFIG):
            opts.config_file = None
    opts.http_url = args.url or opts.http_url
    opts.socket_path = args.socket or opts.socket_path
    opts.username = args.username or opts.username
    opts.password = args.password or opts.password
    return opts


def build_parser(tools: list[ITool]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="supervisorrpc",
        description="Control and tail processes of a remote supervisord over XML-RPC",
    )
    _add_common_args(parser)

    subparsers = parser.add_subparsers(dest="command")

    p_serve = subparsers.add_parser("serve", help="Serve the supervisord tools over MCP")
    p_serve.add_argument("--port", type=int, default=get_default_port())
    _add_common_args(p_serve, suppress=True)

    for tool in tools:
        p_tool = subparsers.add_parser(tool.name, help=tool.description)
        tool.build_subparser(p_tool)
        _add_common_args(p_tool, suppress=True)

    return parser


def parse_cli(argv: list[str]) -> tuple[ServeAction | ToolAction | None, Path]:
    """Parse *argv*, configure logging, and return ``(action, log_path)``.

    ``action`` is ``None`` when no sub-command was given.
    """
    tools = get_tools()
    tools_by_name = {tool.name: tool for tool in tools}
    parser = build_parser(tools)
    args = parser.parse_args(argv)

    log_path = setup_logging(args.verbose, args.data_dir)
    logging.getLogger(CLI_LOGGER_NAME).debug("Verbose log written to %s", log_path)

    if args.command is None:
        parser.print_help()
        return None, log_path

    options = options_from_args(args)
    if args.command == "serve":
        return ServeAction(port=args.port, options=options, verbose=args.verbose), log_path
    return ToolAction(tool=tools_by_name[args.command], args=args, options=options), log_path


def cli() -> None:
    action, _ = parse_cli(sys.argv[1:])
    if action is None:
        sys.exit(1)
    sys.exit(action.run())
