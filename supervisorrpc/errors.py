"""Exception hierarchy shared by the transport, control and tail layers."""

from __future__ import annotations

__all__ = [
    "SupervisorError",
    "ConfigError",
    "TransportError",
    "ProtocolError",
    "RpcFault",
    "NotFoundError",
    "TailCancelled",
    "BAD_NAME",
]

# supervisord fault code for an unknown process or group name
BAD_NAME = 10


class SupervisorError(Exception):
    """Base class for every error raised by *supervisorrpc*."""


class ConfigError(SupervisorError):
    pass


class TransportError(SupervisorError):
    """The RPC call itself failed (connection, auth, HTTP status)."""


class ProtocolError(SupervisorError):
    """supervisord answered with a reply of an unexpected shape."""


class RpcFault(SupervisorError):
    """An XML-RPC fault returned by supervisord."""

    def __init__(self, code: int, fault_string: str) -> None:
        super().__init__(f"{fault_string} (fault {code})")
        self.code = code
        self.fault_string = fault_string


class NotFoundError(RpcFault):
    def __init__(self, fault_string: str, code: int = BAD_NAME) -> None:
        super().__init__(code, fault_string)


class TailCancelled(SupervisorError):
    """The consumer cancelled the tail session."""

    def __init__(self, message: str = "tail cancelled") -> None:
        super().__init__(message)
