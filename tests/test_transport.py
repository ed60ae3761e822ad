import base64
import xmlrpc.client

import httpx
import pytest

from supervisorrpc.config import ConnectionOptions
from supervisorrpc.errors import (
    ConfigError,
    NotFoundError,
    ProtocolError,
    RpcFault,
    TransportError,
)
from supervisorrpc.transport import Endpoint, RpcClient, candidate_endpoints, connect


def _reply(value) -> httpx.Response:
    body = xmlrpc.client.dumps((value,), methodresponse=True, allow_none=True)
    return httpx.Response(200, content=body.encode(), headers={"Content-Type": "text/xml"})


def _fault(code: int, text: str) -> httpx.Response:
    body = xmlrpc.client.dumps(xmlrpc.client.Fault(code, text))
    return httpx.Response(200, content=body.encode())


def _client(handler, endpoint: Endpoint | None = None) -> RpcClient:
    endpoint = endpoint or Endpoint("http", "127.0.0.1:9001")
    return RpcClient(endpoint, transport=httpx.MockTransport(handler))


class TestEndpoint:
    @pytest.mark.parametrize(
        "address, url",
        [
            ("127.0.0.1:9001", "http://127.0.0.1:9001/RPC2"),
            ("*:9001", "http://127.0.0.1:9001/RPC2"),
            (":9001", "http://127.0.0.1:9001/RPC2"),
            ("supervisor.internal:9001", "http://supervisor.internal:9001/RPC2"),
        ],
    )
    def test_http_url(self, address, url):
        assert Endpoint("http", address).url == url

    def test_unix_endpoint_uses_fixed_url(self):
        endpoint = Endpoint("unix", "/run/supervisor.sock")
        assert endpoint.url == "http://127.0.0.1/RPC2"
        assert str(endpoint) == "unix:///run/supervisor.sock"


@pytest.mark.asyncio
class TestRpcClient:
    async def test_encodes_call_and_decodes_reply(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["type"] = request.headers["content-type"]
            seen["call"] = xmlrpc.client.loads(request.content)
            return _reply(["chunk", 42, False])

        async with _client(handler) as client:
            result = await client.invoke("supervisor.tailProcessStdoutLog", "web", 0, 1024)

        assert result == ["chunk", 42, False]
        assert seen["url"] == "http://127.0.0.1:9001/RPC2"
        assert seen["type"] == "text/xml"
        assert seen["call"] == (("web", 0, 1024), "supervisor.tailProcessStdoutLog")

    async def test_basic_auth_sent_when_configured(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return _reply("3.0")

        endpoint = Endpoint("http", "127.0.0.1:9001", "user", "s3cret")
        async with _client(handler, endpoint) as client:
            await client.invoke("supervisor.getAPIVersion")

        assert seen["auth"] == "Basic " + base64.b64encode(b"user:s3cret").decode()

    async def test_no_auth_without_password(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return _reply("3.0")

        endpoint = Endpoint("http", "127.0.0.1:9001", "user", "")
        async with _client(handler, endpoint) as client:
            await client.invoke("supervisor.getAPIVersion")

        assert seen["auth"] is None

    async def test_bad_name_fault_is_not_found(self):
        async with _client(lambda request: _fault(10, "BAD_NAME: ghost")) as client:
            with pytest.raises(NotFoundError) as exc_info:
                await client.invoke("supervisor.getProcessInfo", "ghost")
        assert exc_info.value.code == 10
        assert exc_info.value.fault_string == "BAD_NAME: ghost"

    async def test_other_fault(self):
        async with _client(lambda request: _fault(70, "NOT_RUNNING: web")) as client:
            with pytest.raises(RpcFault) as exc_info:
                await client.invoke("supervisor.stopProcess", "web")
        assert not isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.code == 70
        assert "NOT_RUNNING" in str(exc_info.value)

    async def test_http_error_status(self):
        async with _client(lambda request: httpx.Response(401, content=b"Unauthorized")) as client:
            with pytest.raises(TransportError, match="HTTP 401"):
                await client.invoke("supervisor.getAPIVersion")

    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransportError, match="connection refused"):
                await client.invoke("supervisor.getAPIVersion")

    async def test_undecodable_body(self):
        async with _client(lambda request: httpx.Response(200, content=b"<html>oops")) as client:
            with pytest.raises(ProtocolError):
                await client.invoke("supervisor.getAPIVersion")

    async def test_reply_without_params(self):
        body = b"<?xml version='1.0'?><methodResponse><params></params></methodResponse>"
        async with _client(lambda request: httpx.Response(200, content=body)) as client:
            assert await client.invoke("supervisor.getAPIVersion") is None


class TestCandidates:
    def test_socket_before_http(self):
        opts = ConnectionOptions(http_url="127.0.0.1:9001", socket_path="/tmp/s.sock", username="u", password="p")
        kinds = [(e.kind, e.address, e.password) for e in candidate_endpoints(opts)]
        assert kinds == [("unix", "/tmp/s.sock", "p"), ("http", "127.0.0.1:9001", "p")]

    def test_nothing_configured(self):
        assert candidate_endpoints(ConnectionOptions()) == []


@pytest.mark.asyncio
class TestConnect:
    async def test_falls_back_to_http(self):
        def dead(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no such file", request=request)

        def alive(request: httpx.Request) -> httpx.Response:
            return _reply("3.0")

        def factory(endpoint: Endpoint) -> httpx.AsyncBaseTransport:
            return httpx.MockTransport(dead if endpoint.kind == "unix" else alive)

        opts = ConnectionOptions(http_url="127.0.0.1:9001", socket_path="/tmp/s.sock")
        client = await connect(opts, transport_factory=factory)
        try:
            assert client.endpoint.kind == "http"
        finally:
            await client.aclose()

    async def test_prefers_socket(self):
        def factory(endpoint: Endpoint) -> httpx.AsyncBaseTransport:
            return httpx.MockTransport(lambda request: _reply("3.0"))

        opts = ConnectionOptions(http_url="127.0.0.1:9001", socket_path="/tmp/s.sock")
        client = await connect(opts, transport_factory=factory)
        try:
            assert client.endpoint.kind == "unix"
        finally:
            await client.aclose()

    async def test_all_endpoints_down(self):
        def factory(endpoint: Endpoint) -> httpx.AsyncBaseTransport:
            return httpx.MockTransport(lambda request: httpx.Response(503))

        opts = ConnectionOptions(http_url="127.0.0.1:9001", socket_path="/tmp/s.sock")
        with pytest.raises(TransportError, match="HTTP 503"):
            await connect(opts, transport_factory=factory)

    async def test_auth_fault_is_not_retried(self):
        calls = []

        def factory(endpoint: Endpoint) -> httpx.AsyncBaseTransport:
            calls.append(endpoint.kind)
            return httpx.MockTransport(lambda request: _fault(2, "INCORRECT_PARAMETERS"))

        opts = ConnectionOptions(http_url="127.0.0.1:9001", socket_path="/tmp/s.sock")
        with pytest.raises(RpcFault):
            await connect(opts, transport_factory=factory)
        assert calls == ["unix"]

    async def test_no_endpoint_configured(self):
        with pytest.raises(ConfigError, match="inet_http_server is disabled"):
            await connect(ConnectionOptions())
