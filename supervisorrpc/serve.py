from __future__ import annotations

import logging
from pathlib import Path

from fastmcp import FastMCP

from .config import ConnectionOptions
from .logging_utils import CLI_LOGGER
from .tools import Opener, get_tools, make_opener

logger = logging.getLogger(__name__)

__all__ = ["serve", "build_app"]


def build_app(opener: Opener, config_file: Path | str | None = None) -> FastMCP:  # noqa: D401 – helper
    """Return a *FastMCP* application with all *supervisorrpc* tools registered.

    *config_file* is what the ``options`` tool reads when the caller names no file.
    """

    app = FastMCP(
        "supervisorrpc",
        "Inspect and control processes managed by a supervisord instance.",
    )

    for tool in get_tools(config_file):
        tool.register_tool(opener, app)

    return app


def serve(port: int, options: ConnectionOptions) -> int:  # noqa: D401
    """Serve the supervisord tools over MCP until interrupted.

    Every tool call opens its own connection to supervisord, so the server
    starts even when supervisord is down and recovers once it is back.
    """
    app = build_app(make_opener(options), options.config_file)

    CLI_LOGGER.info("Starting MCP server on http://127.0.0.1:%d", port)

    try:
        app.run(transport="http", host="127.0.0.1", port=port, path="/mcp/")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested (Ctrl+C)")
    finally:
        logger.info("Server process exiting")
    return 0
