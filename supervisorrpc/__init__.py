"""
supervisorrpc: control and tail supervisord processes over XML-RPC.

Besides the one-shot control calls, the package turns supervisord's bounded
log snapshots into a continuous, line oriented tail (see ``TailSession``).
"""

from .config import ConnectionOptions, parse_rpc_config, program_options
from .daemon import DaemonControl
from .errors import (
    ConfigError,
    NotFoundError,
    ProtocolError,
    RpcFault,
    SupervisorError,
    TailCancelled,
    TransportError,
)
from .process_manager import ProcessManager
from .process_types import LogSource, ProcessInfo, ProcessState, Snapshot, TailRequest
from .tail import ErrorLine, OffsetReconciler, TailSession, reconcile
from .transport import RpcClient, connect

# Package metadata
__version__ = "0.1.0"

# Public API
__all__ = [
    "ConnectionOptions",
    "parse_rpc_config",
    "program_options",
    "DaemonControl",
    "ConfigError",
    "NotFoundError",
    "ProtocolError",
    "RpcFault",
    "SupervisorError",
    "TailCancelled",
    "TransportError",
    "ProcessManager",
    "LogSource",
    "ProcessInfo",
    "ProcessState",
    "Snapshot",
    "TailRequest",
    "ErrorLine",
    "OffsetReconciler",
    "TailSession",
    "reconcile",
    "RpcClient",
    "connect",
]
