"""Core forwarding engine for inspector-proxy.

Relays traffic between a client-facing and a server-facing transport
adapter. Two concurrent pumps drain each side's events: messages are
forwarded to the other side, errors are classified and reported, and the
first close tears the session down exactly once.

A failed send never tears anything down. A request the proxy could not
deliver is answered with a JSON-RPC error carrying the configured
delivery-failure code and the failure's exception type in ``data``;
undeliverable notifications and responses are only logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from mcp.shared.message import SessionMessage

from inspector_proxy.adapters.base import (
    CloseEvent,
    ErrorEvent,
    MessageEvent,
    TransportAdapter,
)
from inspector_proxy.config import ProxyConfig
from inspector_proxy.correlation import (
    describe,
    extract_jsonrpc_id,
    is_answerable,
    make_error_response,
)
from inspector_proxy.diagnostics import ErrorKind, report_error
from inspector_proxy.models import Side

logger = logging.getLogger(__name__)


@dataclass
class PipelineSession:
    """Settings and observer callbacks for one forwarding relationship.

    Callbacks run on the event loop inside the pump that triggered them
    and must not block.

    Args:
        config: Supplies the delivery error code and error patterns.
        session_id: Label used in diagnostics.
        on_message: Called with each message received from a side, before
            it is forwarded.
        on_error: Called with each reported error and its category.
        on_server_session: Called once with the server-facing session id,
            if the server transport exposes one.
        on_closed: Called with the side whose close ended the session.
    """

    config: ProxyConfig = field(default_factory=ProxyConfig)
    session_id: str | None = None
    on_message: Callable[[Side, SessionMessage], None] | None = None
    on_error: Callable[[Side, Exception, ErrorKind], None] | None = None
    on_server_session: Callable[[str], None] | None = None
    on_closed: Callable[[Side], None] | None = None


async def run_pipeline(
    client_adapter: TransportAdapter,
    server_adapter: TransportAdapter,
    session: PipelineSession | None = None,
) -> None:
    """Run the bidirectional relay until both sides have closed.

    Both adapters must already be started.

    Args:
        client_adapter: The client-facing transport adapter.
        server_adapter: The server-facing transport adapter.
        session: Relay settings and callbacks.
    """
    relay = _Relay(client_adapter, server_adapter, session or PipelineSession())
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(relay.pump(Side.CLIENT), name="pipeline-client-pump")
            tg.create_task(relay.pump(Side.SERVER), name="pipeline-server-pump")
    finally:
        if not relay.finished:
            # Cancelled or crashed before either side closed.
            await relay.shutdown()


class _Relay:
    """Mutable state of one forwarding relationship."""

    def __init__(
        self,
        client: TransportAdapter,
        server: TransportAdapter,
        session: PipelineSession,
    ) -> None:
        self._adapters = {Side.CLIENT: client, Side.SERVER: server}
        self._closed = {Side.CLIENT: False, Side.SERVER: False}
        self._session = session
        self._reported_server_session = False
        self._label = f"[{session.session_id}] " if session.session_id else ""

    @property
    def finished(self) -> bool:
        """True once either side's close has been handled."""
        return any(self._closed.values())

    async def pump(self, side: Side) -> None:
        """Handle events from ``side`` until its close event."""
        source = self._adapters[side]
        while True:
            event = await source.receive()
            if isinstance(event, MessageEvent):
                await self._handle_message(side, event.message)
            elif isinstance(event, ErrorEvent):
                self._report(side, event.error)
            elif isinstance(event, CloseEvent):
                await self._handle_close(side)
                return

    async def shutdown(self) -> None:
        """Close both sides after an abnormal exit."""
        for side in (Side.CLIENT, Side.SERVER):
            self._closed[side] = True
            try:
                await self._adapters[side].close()
            except Exception as exc:
                self._report(side, exc)

    async def _handle_message(self, side: Side, message: SessionMessage) -> None:
        if self._session.on_message is not None:
            self._session.on_message(side, message)

        if side == Side.SERVER:
            self._report_server_session()

        destination = self._adapters[side.peer]
        try:
            await destination.send(message)
        except Exception as exc:
            if side == Side.CLIENT:
                await self._answer_undelivered(message, exc)
            else:
                # The server cannot retry; the failure belongs to the client side.
                self._report(Side.CLIENT, exc)

    async def _answer_undelivered(self, message: SessionMessage, exc: Exception) -> None:
        """Reply to a request the server side could not accept."""
        logger.warning(
            "%sFailed to deliver %s to server: %s",
            self._label,
            describe(message.message),
            exc,
        )
        request_id = extract_jsonrpc_id(message.message)
        if not is_answerable(message.message) or request_id is None:
            return
        if self._closed[Side.CLIENT]:
            return

        detail = {"type": type(exc).__name__}
        if exc.__cause__ is not None:
            detail["cause"] = type(exc.__cause__).__name__
        error_response = make_error_response(
            request_id,
            self._session.config.delivery_error_code,
            str(exc) or type(exc).__name__,
            data=detail,
        )
        try:
            await self._adapters[Side.CLIENT].send(error_response)
        except Exception as reply_exc:
            self._report(Side.CLIENT, reply_exc)

    def _report_server_session(self) -> None:
        if self._reported_server_session:
            return
        self._reported_server_session = True
        server_session_id = self._adapters[Side.SERVER].session_id
        if not server_session_id:
            return
        logger.info("%sProxy <-> Server sessionId: %s", self._label, server_session_id)
        if self._session.on_server_session is not None:
            self._session.on_server_session(server_session_id)

    async def _handle_close(self, side: Side) -> None:
        peer = side.peer
        if self._closed[peer] or self._closed[side]:
            # This close is the echo of the one we propagated.
            return
        self._closed[side] = True
        logger.debug("%s%s side closed; closing %s side", self._label, side, peer)
        if self._session.on_closed is not None:
            self._session.on_closed(side)
        try:
            await self._adapters[peer].close()
        except Exception as exc:
            self._report(peer, exc)

    def _report(self, side: Side, exc: Exception) -> None:
        kind = report_error(side, exc, self._session.config)
        if self._session.on_error is not None:
            self._session.on_error(side, exc, kind)
