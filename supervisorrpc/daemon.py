from __future__ import annotations

import logging

from .errors import ProtocolError
from .process_manager import Invoker
from .process_types import DaemonState

__all__ = ["DaemonControl"]

logger = logging.getLogger(__name__)


class DaemonControl:
    """Calls addressed to supervisord itself rather than to a process."""

    def __init__(self, client: Invoker) -> None:
        self._client = client

    async def api_version(self) -> str:
        return await self._client.invoke("supervisor.getAPIVersion")

    async def supervisord_version(self) -> str:
        return await self._client.invoke("supervisor.getSupervisorVersion")

    async def state(self) -> DaemonState:
        reply = await self._client.invoke("supervisor.getState")
        try:
            return DaemonState(statecode=reply["statecode"], statename=reply["statename"])
        except (TypeError, KeyError) as exc:
            raise ProtocolError(f"unexpected getState reply: {reply!r}") from exc

    async def shutdown(self) -> None:
        logger.info("Requesting supervisord shutdown")
        await self._client.invoke("supervisor.shutdown")

    async def restart(self) -> None:
        logger.info("Requesting supervisord restart")
        await self._client.invoke("supervisor.restart")
