"""XML-RPC client for supervisord over HTTP or a unix domain socket.

Calls are encoded and decoded with :mod:`xmlrpc.client` and carried by
``httpx.AsyncClient``; the unix socket variant uses an ``httpx`` transport
bound to the socket path.
"""

from __future__ import annotations

import logging
import xmlrpc.client
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from xml.parsers.expat import ExpatError

import httpx

from .config import ConnectionOptions
from .errors import (
    BAD_NAME,
    ConfigError,
    NotFoundError,
    ProtocolError,
    RpcFault,
    TransportError,
)

__all__ = ["Endpoint", "RpcClient", "connect", "candidate_endpoints"]

logger = logging.getLogger(__name__)

RPC_PATH = "/RPC2"
DEFAULT_TIMEOUT = 30.0
# Host part is ignored when talking over a unix socket.
_SOCKET_BASE_URL = "http://127.0.0.1"


@dataclass(frozen=True)
class Endpoint:
    kind: str  # "unix" | "http"
    address: str
    username: str = ""
    password: str = ""

    @property
    def url(self) -> str:
        if self.kind == "unix":
            return _SOCKET_BASE_URL + RPC_PATH
        host = self.address
        # inet_http_server accepts "*:9001" and ":9001" meaning all interfaces
        if host.startswith("*:"):
            host = "127.0.0.1" + host[1:]
        elif host.startswith(":"):
            host = "127.0.0.1" + host
        return f"http://{host}{RPC_PATH}"

    def __str__(self) -> str:
        return f"unix://{self.address}" if self.kind == "unix" else self.url


class RpcClient:
    """Thin async XML-RPC proxy; ``invoke`` is the only call path."""

    def __init__(
        self,
        endpoint: Endpoint,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        if transport is None and endpoint.kind == "unix":
            transport = httpx.AsyncHTTPTransport(uds=endpoint.address)
        auth = None
        if endpoint.username and endpoint.password:
            auth = httpx.BasicAuth(endpoint.username, endpoint.password)
        self._http = httpx.AsyncClient(transport=transport, auth=auth, timeout=timeout)

    async def invoke(self, method: str, *args: Any) -> Any:
        body = xmlrpc.client.dumps(args, methodname=method, allow_none=True)
        logger.debug("event=rpc_call endpoint=%s method=%s args=%r", self.endpoint, method, args)
        try:
            response = await self._http.post(
                self.endpoint.url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "text/xml"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} failed on {self.endpoint}: {exc}") from exc

        if response.status_code != 200:
            raise TransportError(
                f"{method} failed on {self.endpoint}: HTTP {response.status_code} {response.reason_phrase}"
            )

        try:
            params, _ = xmlrpc.client.loads(response.content, use_builtin_types=True)
        except xmlrpc.client.Fault as fault:
            if fault.faultCode == BAD_NAME:
                raise NotFoundError(fault.faultString) from fault
            raise RpcFault(fault.faultCode, fault.faultString) from fault
        except (ExpatError, xmlrpc.client.ResponseError, ValueError) as exc:
            raise ProtocolError(f"{method}: undecodable reply: {exc}") from exc

        return params[0] if params else None

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def candidate_endpoints(options: ConnectionOptions) -> list[Endpoint]:
    """Endpoints to try, unix socket first."""
    cfg = options.resolve()
    candidates: list[Endpoint] = []
    if cfg.socket_path:
        candidates.append(Endpoint("unix", cfg.socket_path, cfg.username, cfg.password))
    if cfg.http_url:
        candidates.append(Endpoint("http", cfg.http_url, cfg.username, cfg.password))
    return candidates


async def connect(
    options: ConnectionOptions,
    timeout: float = DEFAULT_TIMEOUT,
    transport_factory: Callable[[Endpoint], httpx.AsyncBaseTransport] | None = None,
) -> RpcClient:
    """Return a client for the first endpoint that answers ``getAPIVersion``."""
    candidates = candidate_endpoints(options)
    if not candidates:
        raise ConfigError(
            "init rpc client error: inet_http_server is disabled or unix socket path not found"
        )

    last_exc: TransportError | None = None
    for endpoint in candidates:
        transport = transport_factory(endpoint) if transport_factory else None
        client = RpcClient(endpoint, timeout=timeout, transport=transport)
        try:
            version = await client.invoke("supervisor.getAPIVersion")
        except TransportError as exc:
            logger.debug("event=probe_failed endpoint=%s error=%s", endpoint, exc)
            last_exc = exc
            await client.aclose()
            continue
        except Exception:
            await client.aclose()
            raise
        logger.debug("event=connected endpoint=%s api_version=%s", endpoint, version)
        return client

    assert last_exc is not None
    raise last_exc
