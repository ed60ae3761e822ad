import dataclasses
import enum
import json
import sys

from rich import print_json as rich_print_json
from rich.console import Console

# Lines from a tail go to stdout untouched; everything decorative uses Rich.
_err_console = Console(stderr=True)


def _default(obj):
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def to_json(data) -> str:
    return json.dumps(data, default=_default, indent=2)


def print_rule(title: str = "") -> None:
    """Print a horizontal rule with optional title to stderr."""
    if title:
        _err_console.rule(f"[bold yellow]{title}[/bold yellow]")
    else:
        _err_console.rule()


def print_json(data) -> None:
    """Print dataclasses, dicts and lists as formatted JSON."""
    rich_print_json(to_json(data))


def print_line(line: str) -> None:
    """Write a raw log line, no markup processing."""
    sys.stdout.write(line)
    sys.stdout.flush()

