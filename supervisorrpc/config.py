from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError, NotFoundError

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "RpcConfig",
    "ConnectionOptions",
    "parse_rpc_config",
    "program_options",
]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("/etc/supervisord.conf")

ENV_CONFIG = "SUPERVISORRPC_CONFIG"
ENV_URL = "SUPERVISORRPC_URL"
ENV_USERNAME = "SUPERVISORRPC_USERNAME"
ENV_PASSWORD = "SUPERVISORRPC_PASSWORD"
ENV_SOCKET = "SUPERVISORRPC_SOCKET"


def _strip_scheme(value: str, scheme: str) -> str:
    return value[len(scheme) :] if value.startswith(scheme) else value


def _load(path: Path) -> configparser.ConfigParser:
    # supervisord's own %(here)s style expansions are left untouched.
    parser = configparser.ConfigParser(
        interpolation=None, strict=False, inline_comment_prefixes=(";",)
    )
    try:
        with path.open("r", encoding="utf-8") as fh:
            parser.read_file(fh, source=str(path))
    except OSError as exc:
        raise ConfigError(f"Cannot read supervisord config {path}: {exc}") from exc
    except configparser.Error as exc:
        raise ConfigError(f"Invalid supervisord config {path}: {exc}") from exc
    return parser


@dataclass
class RpcConfig:
    """RPC endpoints advertised by a supervisord configuration file."""

    http_url: str = ""
    username: str = ""
    password: str = ""
    socket_path: str = ""


def parse_rpc_config(path: Path | str) -> RpcConfig:
    """Read the ``inet_http_server``, ``supervisorctl`` and ``unix_http_server`` sections."""
    parser = _load(Path(path))
    cfg = RpcConfig()

    if parser.has_section("inet_http_server"):
        sect = parser["inet_http_server"]
        cfg.http_url = sect.get("port", "").strip()
        cfg.username = sect.get("username", "").strip()
        cfg.password = sect.get("password", "").strip()

    if parser.has_section("supervisorctl"):
        sect = parser["supervisorctl"]
        server_url = sect.get("serverurl", "").strip()
        if server_url.startswith("unix://"):
            cfg.socket_path = _strip_scheme(server_url, "unix://")
        elif server_url.startswith("http://") and not cfg.http_url:
            cfg.http_url = _strip_scheme(server_url, "http://")
        cfg.username = cfg.username or sect.get("username", "").strip()
        cfg.password = cfg.password or sect.get("password", "").strip()

    if not cfg.socket_path and parser.has_section("unix_http_server"):
        cfg.socket_path = parser["unix_http_server"].get("file", "").strip()

    logger.debug(
        "event=config_parsed path=%s http=%s socket=%s auth=%s",
        path,
        cfg.http_url or "-",
        cfg.socket_path or "-",
        bool(cfg.username),
    )
    return cfg


def program_options(name: str, config_file: Path | str) -> dict[str, str]:
    """Return the raw options of ``[program:<name>]`` in *config_file*."""
    parser = _load(Path(config_file))
    section = f"program:{name}"
    if not parser.has_section(section):
        raise NotFoundError(f"No [{section}] section in {config_file}")
    return {key: value for key, value in parser.items(section)}


@dataclass
class ConnectionOptions:
    """Where and how to reach supervisord.

    Explicit values win over whatever ``config_file`` advertises.
    """

    config_file: Path | None = None
    http_url: str = ""
    username: str = ""
    password: str = ""
    socket_path: str = ""

    @classmethod
    def from_config_file(cls, path: Path | str = DEFAULT_CONFIG_FILE) -> "ConnectionOptions":
        return cls(config_file=Path(path))

    @classmethod
    def default_config_file(cls) -> "ConnectionOptions":
        return cls.from_config_file(DEFAULT_CONFIG_FILE)

    @classmethod
    def from_env(cls) -> "ConnectionOptions":
        """Build options from ``SUPERVISORRPC_*`` variables.

        Without any of them set, the default ``/etc/supervisord.conf`` is used.
        """
        config_file = os.environ.get(ENV_CONFIG) or None
        opts = cls(
            config_file=Path(config_file).expanduser() if config_file else None,
            http_url=os.environ.get(ENV_URL, ""),
            username=os.environ.get(ENV_USERNAME, ""),
            password=os.environ.get(ENV_PASSWORD, ""),
            socket_path=os.environ.get(ENV_SOCKET, ""),
        )
        if not (opts.config_file or opts.http_url or opts.socket_path):
            opts.config_file = cls.default_config_file().config_file
        return opts

    def resolve(self) -> RpcConfig:
        """Merge the config file (if any) with the explicit values."""
        cfg = parse_rpc_config(self.config_file) if self.config_file else RpcConfig()
        return RpcConfig(
            http_url=_strip_scheme(self.http_url or cfg.http_url, "http://"),
            username=self.username or cfg.username,
            password=self.password or cfg.password,
            socket_path=_strip_scheme(self.socket_path or cfg.socket_path, "unix://"),
        )
