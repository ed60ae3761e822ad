from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

CLI_LOGGER_NAME = "supervisorrpc.cli"

# Third-party loggers that would otherwise echo every RPC round trip.
_NOISY_LOGGERS = ("httpx", "httpcore", "mcp", "fastmcp", "uvicorn")


def get_log_path(data_dir: Path, timestamp: str | None = None) -> Path:
    """Return ``data_dir/supervisorrpc.run.<timestamp>.log``.

    If timestamp is None, uses the current timestamp.
    """
    if timestamp is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return data_dir / f"supervisorrpc.run.{timestamp}.log"


class CustomFormatter(logging.Formatter):
    regular = "\x1b[37;20m"
    grey = "\x1b[90;20m"
    yellow = "\x1b[33;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    fmt = "%(message)s"

    FORMATS = {
        logging.DEBUG: grey + fmt + reset,
        logging.INFO: grey + fmt + reset,
        logging.WARNING: regular + fmt + reset,
        logging.ERROR: yellow + fmt + reset,
        logging.CRITICAL: bold_red + fmt + reset,
    }

    def format(self, record):
        formatter = logging.Formatter(self.FORMATS.get(record.levelno))
        return formatter.format(record)


class _CliOnlyFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 – simple predicate
        return record.name.startswith(CLI_LOGGER_NAME)


def setup_logging(verbosity: int, data_dir: Path) -> Path:
    """Configure logging for the current *supervisorrpc* invocation.

    A file handler capturing *all* records at DEBUG level writes to
    ``data_dir/supervisorrpc.run.<timestamp>.log``; the console handler depends
    on *verbosity*:

    * ``-1``: warnings of the CLI logger only
    * ``0``: INFO of the CLI logger only
    * ``1``: INFO from every logger
    * ``2+``: DEBUG from every logger

    Returns the path of the log file.
    """
    data_dir.mkdir(parents=True, exist_ok=True)
    log_path = get_log_path(data_dir)

    root_logger = logging.getLogger()
    # Tests and repeated CLI invocations call this more than once.
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    )
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    if verbosity <= -1:
        console_handler.setLevel(logging.WARNING)
        console_handler.addFilter(_CliOnlyFilter())
    elif verbosity == 0:
        console_handler.setLevel(logging.INFO)
        console_handler.addFilter(_CliOnlyFilter())
    elif verbosity == 1:
        console_handler.setLevel(logging.INFO)
    else:
        console_handler.setLevel(logging.DEBUG)

    if sys.stderr.isatty():
        console_handler.setFormatter(CustomFormatter())
    else:
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path


CLI_LOGGER = logging.getLogger(CLI_LOGGER_NAME)
