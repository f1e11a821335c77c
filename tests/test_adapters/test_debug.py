"""Tests for inspector_proxy.adapters.debug — the debug-logging wrapper."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage, JSONRPCRequest, JSONRPCResponse

from inspector_proxy.adapters.base import CloseEvent, MessageEvent
from inspector_proxy.adapters.debug import DebugLoggingAdapter, unwrap, wrap_with_debug_logging
from inspector_proxy.adapters.loopback import create_loopback_pair
from inspector_proxy.config import ProxyConfig
from inspector_proxy.errors import TransportSendError


def _request(msg_id: int) -> SessionMessage:
    return SessionMessage(
        message=JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=msg_id, method="tools/list"))
    )


def _response(msg_id: int) -> SessionMessage:
    return SessionMessage(
        message=JSONRPCMessage(JSONRPCResponse(jsonrpc="2.0", id=msg_id, result={}))
    )


def _read_entries(path: Path) -> list[dict[str, Any]]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestWrapWithDebugLogging:
    """Wrapping is driven by the config."""

    def test_disabled_returns_adapter(self) -> None:
        a, _ = create_loopback_pair()
        assert wrap_with_debug_logging(a, "server", ProxyConfig()) is a

    def test_enabled_wraps(self, tmp_path: Path) -> None:
        a, _ = create_loopback_pair(session_id="s1")
        wrapped = wrap_with_debug_logging(a, "server", ProxyConfig(debug_file=tmp_path / "mcp"))

        assert isinstance(wrapped, DebugLoggingAdapter)
        assert wrapped.session_id == "s1"
        assert unwrap(wrapped) is a

    def test_unwrap_plain_adapter(self) -> None:
        a, _ = create_loopback_pair()
        assert unwrap(a) is a


class TestDebugLoggingAdapter:
    """Every send, receive, and close becomes one log entry."""

    async def test_records_sends_receives_and_close(self, tmp_path: Path) -> None:
        inner, peer = create_loopback_pair()
        adapter = DebugLoggingAdapter(inner, "server", tmp_path / "mcp")
        await adapter.start()
        await peer.start()

        sends, receives = 3, 2
        for i in range(sends):
            await adapter.send(_request(i))
        for i in range(receives):
            await peer.send(_response(i))
        for _ in range(receives):
            event = await asyncio.wait_for(adapter.receive(), timeout=1)
            assert isinstance(event, MessageEvent)

        await adapter.close()
        event = await asyncio.wait_for(adapter.receive(), timeout=1)
        assert isinstance(event, CloseEvent)

        entries = _read_entries(adapter.debug_logger.path)
        directions = [e["direction"] for e in entries]
        assert directions == ["send"] * sends + ["recv"] * receives + ["close"]
        assert [e["message"]["id"] for e in entries[:sends]] == [0, 1, 2]
        assert all(e["role"] == "server" for e in entries)
        await peer.close()

    async def test_events_pass_through_unchanged(self, tmp_path: Path) -> None:
        inner, peer = create_loopback_pair()
        adapter = DebugLoggingAdapter(inner, "client", tmp_path / "mcp")
        await adapter.start()
        await peer.start()

        sent = _response(9)
        await peer.send(sent)
        event = await asyncio.wait_for(adapter.receive(), timeout=1)

        assert isinstance(event, MessageEvent)
        assert event.message.message == sent.message
        await adapter.close()
        await peer.close()

    async def test_peer_close_logged_once(self, tmp_path: Path) -> None:
        inner, peer = create_loopback_pair()
        adapter = DebugLoggingAdapter(inner, "server", tmp_path / "mcp")
        await adapter.start()
        await peer.start()

        await peer.close()
        event = await asyncio.wait_for(adapter.receive(), timeout=1)
        await adapter.close()

        assert isinstance(event, CloseEvent)
        directions = [e["direction"] for e in _read_entries(adapter.debug_logger.path)]
        assert directions == ["close"]

    async def test_send_failure_propagates(self, tmp_path: Path) -> None:
        inner, _ = create_loopback_pair()
        adapter = DebugLoggingAdapter(inner, "server", tmp_path / "mcp")

        try:
            await adapter.send(_request(1))
            raise AssertionError("Expected TransportSendError")  # noqa: TRY301
        except TransportSendError:
            pass

    async def test_unwritable_log_does_not_break_traffic(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        inner, peer = create_loopback_pair()
        adapter = DebugLoggingAdapter(inner, "server", blocker / "sub" / "mcp")
        await adapter.start()
        await peer.start()

        await adapter.send(_request(1))
        event = await asyncio.wait_for(peer.receive(), timeout=1)

        assert isinstance(event, MessageEvent)
        assert not adapter.debug_logger.active
        await adapter.close()
        await peer.close()
