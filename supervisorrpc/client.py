from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

from .config import ConnectionOptions
from .process_manager import ProcessManager
from .transport import RpcClient, connect

__all__ = ["make_client", "open_process_manager"]


@contextlib.asynccontextmanager
async def make_client(options: ConnectionOptions) -> AsyncIterator[RpcClient]:
    """Connect to supervisord (socket first, then HTTP) for the duration of a block."""
    client = await connect(options)
    try:
        yield client
    finally:
        await client.aclose()


@contextlib.asynccontextmanager
async def open_process_manager(options: ConnectionOptions) -> AsyncIterator[ProcessManager]:
    async with make_client(options) as client:
        yield ProcessManager(client)
