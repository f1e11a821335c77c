"""Tests for inspector_proxy.server — HTTP endpoints and session lifecycle."""

from __future__ import annotations

import asyncio
import json
import shlex
import sys
from pathlib import Path
from typing import Any
from unittest.mock import patch
from urllib.parse import urlencode

import httpx
import pytest
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage, JSONRPCRequest
from starlette.requests import Request
from starlette.testclient import TestClient

from inspector_proxy.adapters.base import CloseEvent, MessageEvent
from inspector_proxy.adapters.loopback import create_loopback_pair
from inspector_proxy.config import ProxyConfig
from inspector_proxy.errors import DuplicateSessionError, TransportCreationError
from inspector_proxy.models import TransportKind, TransportParams
from inspector_proxy.server import ProxyServer, params_from_request

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeTransport:
    """Minimal adapter that only records close() calls."""

    session_id = None

    def __init__(self) -> None:
        self.close_calls = 0

    async def start(self) -> None:
        pass

    async def send(self, message: object) -> None:
        pass

    async def receive(self) -> object:
        raise NotImplementedError

    async def close(self) -> None:
        self.close_calls += 1


def _request(query: dict[str, str], headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/sse",
        "query_string": urlencode(query).encode(),
        "headers": [(k.encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return Request(scope)


def _session_message(msg_id: int = 1) -> SessionMessage:
    return SessionMessage(
        message=JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=msg_id, method="tools/list"))
    )


async def _wait_until(predicate: Any, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def proxy() -> ProxyServer:
    return ProxyServer(config=ProxyConfig())


@pytest.fixture
def client(proxy: ProxyServer) -> TestClient:
    return TestClient(proxy.build_app())


# ---------------------------------------------------------------------------
# params_from_request
# ---------------------------------------------------------------------------


class TestParamsFromRequest:
    """Target parameters from the inspector's query string."""

    def test_stdio_params(self) -> None:
        request = _request(
            {
                "transportType": "stdio",
                "command": "python",
                "args": "-m server --name 'my server'",
                "env": json.dumps({"TOKEN": "t", "DEBUG": 1}),
            }
        )
        params = params_from_request(request)

        assert params.kind == TransportKind.STDIO
        assert params.command == "python"
        assert params.args == ["-m", "server", "--name", "my server"]
        assert params.env == {"TOKEN": "t", "DEBUG": "1"}

    def test_network_params_forward_authorization(self) -> None:
        request = _request(
            {"transportType": "sse", "url": "http://localhost:3001/sse"},
            headers={"authorization": "Bearer t", "cookie": "secret"},
        )
        params = params_from_request(request)

        assert params.kind == TransportKind.SSE
        assert params.url == "http://localhost:3001/sse"
        assert params.headers == {"authorization": "Bearer t"}

    def test_default_kind(self) -> None:
        params = params_from_request(_request({"command": "server"}), TransportKind.STDIO)
        assert params.kind == TransportKind.STDIO

    @pytest.mark.parametrize(
        "query",
        [
            {},
            {"transportType": "websocket"},
            {"transportType": "stdio", "env": "[1, 2]"},
            {"transportType": "stdio", "env": "{not json"},
            {"transportType": "stdio", "args": "unterminated 'quote"},
        ],
    )
    def test_malformed_rejected(self, query: dict[str, str]) -> None:
        with pytest.raises(ValueError):
            params_from_request(_request(query))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class TestEndpoints:
    """Routing and error responses."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "sessions": 0}

    def test_message_unknown_session(self, client: TestClient) -> None:
        response = client.post("/message?sessionId=missing", json={"jsonrpc": "2.0"})
        assert response.status_code == 404

    def test_message_without_session_id(self, client: TestClient) -> None:
        response = client.post("/message", json={"jsonrpc": "2.0"})
        assert response.status_code == 404

    def test_message_for_non_sse_session(self, proxy: ProxyServer, client: TestClient) -> None:
        proxy.registry.register("abc", FakeTransport(), FakeTransport())
        response = client.post("/message?sessionId=abc", json={"jsonrpc": "2.0"})
        assert response.status_code == 404

    def test_sse_missing_transport_type(self, client: TestClient) -> None:
        response = client.get("/sse")
        assert response.status_code == 400
        assert "transportType" in response.text

    def test_sse_bad_env(self, client: TestClient) -> None:
        response = client.get("/sse?" + urlencode({"transportType": "stdio", "env": "[]"}))
        assert response.status_code == 400

    def test_sse_creation_failure(self, client: TestClient) -> None:
        response = client.get("/sse?transportType=stdio")
        assert response.status_code == 500
        assert "Command is required" in response.text

    def test_stdio_path_defaults_to_stdio(self, client: TestClient) -> None:
        response = client.get("/stdio?command=no-such-server-xyz")
        assert response.status_code == 500
        assert "Command not found" in response.text

    def test_mcp_get_without_session(self, client: TestClient) -> None:
        response = client.get("/mcp")
        assert response.status_code == 400

    def test_mcp_unknown_session(self, client: TestClient) -> None:
        response = client.post(
            "/mcp", json={"jsonrpc": "2.0"}, headers={"mcp-session-id": "missing"}
        )
        assert response.status_code == 404

    def test_mcp_post_bad_params(self, client: TestClient) -> None:
        response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "initialize"})
        assert response.status_code == 400

    def test_disconnect_unknown(self, client: TestClient) -> None:
        response = client.delete("/sessions/missing")
        assert response.status_code == 404

    def test_disconnect_evicts(self, proxy: ProxyServer, client: TestClient) -> None:
        inspector_side, target_side = FakeTransport(), FakeTransport()
        proxy.registry.register("abc", inspector_side, target_side)

        response = client.delete("/sessions/abc")

        assert response.status_code == 204
        assert "abc" not in proxy.registry
        assert inspector_side.close_calls == 1
        assert target_side.close_calls == 1


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestOpenSession:
    """open_session wires a client adapter to a fresh target adapter."""

    async def test_relays_and_evicts_on_target_close(self, proxy: ProxyServer) -> None:
        target, target_peer = create_loopback_pair()
        inspector_facing, inspector = create_loopback_pair(session_id="sess-1")
        await target_peer.start()
        await inspector.start()

        with patch("inspector_proxy.server.create_transport", return_value=target):
            entry = await proxy.open_session(
                inspector_facing, TransportParams(kind=TransportKind.STDIO, command="server")
            )

        assert entry.session_id == "sess-1"
        assert "sess-1" in proxy.registry

        await inspector.send(_session_message(4))
        event = await asyncio.wait_for(target_peer.receive(), timeout=1)
        assert isinstance(event, MessageEvent)
        assert event.message.message.root.id == 4

        await target_peer.close()
        await _wait_until(lambda: "sess-1" not in proxy.registry)
        event = await asyncio.wait_for(inspector.receive(), timeout=1)
        assert isinstance(event, CloseEvent)

    async def test_duplicate_session_closes_both(self, proxy: ProxyServer) -> None:
        proxy.registry.register("taken", FakeTransport(), FakeTransport())
        target = FakeTransport()
        inspector_facing = FakeTransport()
        inspector_facing.session_id = "taken"  # type: ignore[assignment]

        with (
            patch("inspector_proxy.server.create_transport", return_value=target),
            pytest.raises(DuplicateSessionError),
        ):
            await proxy.open_session(
                inspector_facing, TransportParams(kind=TransportKind.STDIO, command="server")
            )

        assert target.close_calls == 1
        assert inspector_facing.close_calls == 1
        assert len(proxy.registry) == 1

    async def test_creation_failure_propagates(self, proxy: ProxyServer) -> None:
        inspector_facing = FakeTransport()
        with pytest.raises(TransportCreationError):
            await proxy.open_session(inspector_facing, TransportParams(kind=TransportKind.STDIO))

        assert len(proxy.registry) == 0

    async def test_shutdown_closes_sessions(self, proxy: ProxyServer) -> None:
        target, target_peer = create_loopback_pair()
        inspector_facing, inspector = create_loopback_pair(session_id="sess-2")
        await target_peer.start()
        await inspector.start()

        with patch("inspector_proxy.server.create_transport", return_value=target):
            await proxy.open_session(
                inspector_facing, TransportParams(kind=TransportKind.STDIO, command="server")
            )

        await asyncio.wait_for(proxy.shutdown(), timeout=2)

        assert len(proxy.registry) == 0
        assert isinstance(await asyncio.wait_for(target_peer.receive(), timeout=1), CloseEvent)


# ---------------------------------------------------------------------------
# Routing to a live stdio target
# ---------------------------------------------------------------------------

FIXTURE_PATH = Path(__file__).resolve().parent.parent / "fixtures" / "echo_server.py"

# Seconds to wait for the target to answer (includes process start)
RESPONSE_TIMEOUT = 15

MCP_ACCEPT = {"accept": "application/json, text/event-stream"}

# Seconds to wait for sessions and the target process to wind down
SHUTDOWN_TIMEOUT = 10


def _echo_target_query() -> str:
    return urlencode(
        {
            "transportType": "stdio",
            "command": sys.executable,
            "args": shlex.quote(str(FIXTURE_PATH)),
        }
    )


def _initialize_body(msg_id: int = 1) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": msg_id,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "test-inspector", "version": "0.1.0"},
        },
    }


INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}


def _sse_events(text: str) -> list[dict[str, str]]:
    """Split an event-stream body into field dicts, skipping comments."""
    events = []
    for block in text.replace("\r\n", "\n").split("\n\n"):
        fields: dict[str, str] = {}
        for line in block.split("\n"):
            name, _, value = line.partition(":")
            if name:
                fields[name] = value.removeprefix(" ")
        if "data" in fields:
            events.append(fields)
    return events


def _messages(text: str) -> list[dict[str, Any]]:
    return [json.loads(e["data"]) for e in _sse_events(text) if e.get("event") == "message"]


class AsgiEventStream:
    """Drive one long-lived GET through an ASGI app and read its events."""

    def __init__(self, app: Any, path: str, query: str) -> None:
        self.status: int | None = None
        self._chunks: asyncio.Queue[bytes] = asyncio.Queue()
        self._buffer = ""
        self._disconnected = asyncio.Event()
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": query.encode(),
            "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }
        self.task = asyncio.create_task(app(scope, self._receive, self._send))

    async def _receive(self) -> dict[str, Any]:
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message: dict[str, Any]) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
        elif message["type"] == "http.response.body" and message.get("body"):
            await self._chunks.put(message["body"])

    async def next_event(self) -> dict[str, str]:
        while True:
            head, sep, rest = self._buffer.partition("\n\n")
            if sep:
                self._buffer = rest
                events = _sse_events(head)
                if events:
                    return events[0]
                continue
            chunk = await asyncio.wait_for(self._chunks.get(), timeout=RESPONSE_TIMEOUT)
            self._buffer += chunk.decode().replace("\r\n", "\n")

    async def disconnect(self) -> None:
        self._disconnected.set()
        await asyncio.wait_for(self.task, timeout=5)


class TestRoutingToLiveTarget:
    """Requests reach the registered session and the target's answers come back."""

    async def test_streamable_http_session(self, proxy: ProxyServer) -> None:
        app = proxy.build_app()
        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(
                transport=transport, base_url="http://testserver", timeout=RESPONSE_TIMEOUT
            ) as http:
                response = await http.post(
                    f"/mcp?{_echo_target_query()}", json=_initialize_body(), headers=MCP_ACCEPT
                )
                assert response.status_code == 200
                session_id = response.headers["mcp-session-id"]
                assert session_id in proxy.registry
                [initialize_result] = _messages(response.text)
                assert initialize_result["id"] == 1
                assert "serverInfo" in initialize_result["result"]

                routed = {**MCP_ACCEPT, "mcp-session-id": session_id}
                response = await http.post("/mcp", json=INITIALIZED, headers=routed)
                assert response.status_code == 202

                response = await http.post(
                    "/mcp",
                    json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
                    headers=routed,
                )
                assert response.status_code == 200
                [tools_result] = _messages(response.text)
                assert tools_result["id"] == 2
                tool_names = [t["name"] for t in tools_result["result"]["tools"]]
                assert "safe_echo" in tool_names
                assert len(proxy.registry) == 1
        finally:
            await asyncio.wait_for(proxy.shutdown(), timeout=SHUTDOWN_TIMEOUT)

        assert len(proxy.registry) == 0

    async def test_sse_session(self, proxy: ProxyServer) -> None:
        app = proxy.build_app()
        stream = AsgiEventStream(app, "/sse", _echo_target_query())
        try:
            endpoint = await stream.next_event()
            assert stream.status == 200
            assert endpoint["event"] == "endpoint"
            assert endpoint["data"].startswith("/message?sessionId=")
            session_id = endpoint["data"].split("sessionId=", 1)[1]
            assert session_id in proxy.registry

            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app), base_url="http://testserver"
            ) as http:
                response = await http.post(endpoint["data"], json=_initialize_body())
                assert response.status_code == 202
                reply = await stream.next_event()
                assert reply["event"] == "message"
                initialize_result = json.loads(reply["data"])
                assert initialize_result["id"] == 1
                assert "serverInfo" in initialize_result["result"]

                response = await http.post(endpoint["data"], json=INITIALIZED)
                assert response.status_code == 202
                response = await http.post(
                    endpoint["data"], json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"}
                )
                assert response.status_code == 202
                reply = await stream.next_event()
                tools_result = json.loads(reply["data"])
                assert tools_result["id"] == 2
                assert "safe_echo" in [t["name"] for t in tools_result["result"]["tools"]]
        finally:
            await stream.disconnect()
            await asyncio.wait_for(proxy.shutdown(), timeout=SHUTDOWN_TIMEOUT)

        assert len(proxy.registry) == 0
