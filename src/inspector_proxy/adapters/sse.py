"""SSE transport adapters for inspector-proxy.

SseServerAdapter connects to a target that speaks the SSE binding: a
long-lived GET delivers the ``endpoint`` event and then the target's
messages, and every outbound message is POSTed to that endpoint.
SseClientAdapter is the proxy acting as an SSE server for the inspector:
outbound messages stream as ``message`` events on a long-lived GET, and
inbound messages arrive as POSTs routed here by session id.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urljoin, urlparse

import anyio
import httpx
from httpx_sse import SSEError, aconnect_sse
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from inspector_proxy.adapters.base import StreamAdapter, StreamPair
from inspector_proxy.adapters.remote import RemoteAdapter, message_payload

logger = logging.getLogger(__name__)

# Messages queued for the inspector before the event stream drains them
_OUTBOUND_BUFFER = 64


class SseServerAdapter(RemoteAdapter):
    """Server-facing adapter — proxy connects to a target over SSE.

    ``start()`` returns once the target has announced its message
    endpoint. The adapter closes when the target ends the event stream.

    Args:
        url: Full URL of the target's event-stream endpoint.
        headers: Extra HTTP headers sent on every request.
        **kwargs: Timeouts and transport, as for RemoteAdapter.
    """

    name = "sse-server"

    def __init__(self, url: str, headers: dict[str, str] | None = None, **kwargs: Any) -> None:
        super().__init__(url, headers, **kwargs)
        self.endpoint_url = ""

    async def _connect(self, client: httpx.AsyncClient) -> None:
        endpoint: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._spawn(self._read_events(client, endpoint), "events")
        self.endpoint_url = await endpoint
        logger.debug("%s posting to %s", self.name, self.endpoint_url)

    async def _post(self, client: httpx.AsyncClient, message: SessionMessage) -> None:
        response = await client.post(self.endpoint_url, json=message_payload(message))
        response.raise_for_status()

    async def _read_events(self, client: httpx.AsyncClient, endpoint: asyncio.Future[str]) -> None:
        """Hold the GET open, resolving ``endpoint`` and feeding messages."""
        try:
            async with aconnect_sse(client, "GET", self.url) as event_source:
                event_source.response.raise_for_status()
                async for sse in event_source.aiter_sse():
                    if sse.event == "endpoint":
                        if not endpoint.done():
                            endpoint.set_result(self._resolve_endpoint(sse.data))
                    elif sse.event == "message" and sse.data:
                        await self._feed_json(sse.data)
        except (httpx.HTTPError, SSEError, ValueError) as exc:
            if not endpoint.done():
                endpoint.set_exception(exc)
                return
            logger.debug("%s event stream failed: %s", self.name, exc)
            await self._feed(exc)
        finally:
            if not endpoint.done():
                endpoint.set_exception(ConnectionError("Event stream ended before endpoint event"))
            await self._end_of_stream()

    def _resolve_endpoint(self, data: str) -> str:
        endpoint_url = urljoin(self.url, data)
        stream, target = urlparse(self.url), urlparse(endpoint_url)
        if (stream.scheme, stream.netloc) != (target.scheme, target.netloc):
            raise ValueError(f"Endpoint origin does not match connection origin: {endpoint_url}")
        return endpoint_url


class SseClientAdapter(StreamAdapter):
    """Client-facing adapter — the inspector connects to the proxy over SSE.

    Args:
        session_id: Id advertised to the inspector in the ``endpoint`` event.
            Generated when omitted.
        message_path: Path the inspector POSTs messages to.

    Example:
        adapter = SseClientAdapter()
        await adapter.start()
        return EventSourceResponse(adapter.event_stream())
    """

    name = "sse-client"

    def __init__(self, session_id: str | None = None, message_path: str = "/message") -> None:
        super().__init__()
        self._session_id = session_id or uuid.uuid4().hex
        self._message_path = message_path
        self._inbound_send, self._inbound_recv = anyio.create_memory_object_stream[
            SessionMessage | Exception
        ](0)
        self._outbound_send, self._outbound_recv = anyio.create_memory_object_stream[
            SessionMessage
        ](_OUTBOUND_BUFFER)

    @property
    def session_id(self) -> str:
        """Id the inspector uses to address POSTs to this session."""
        return self._session_id

    @property
    def endpoint(self) -> str:
        """Relative URL announced in the ``endpoint`` event."""
        return f"{self._message_path}?sessionId={self._session_id}"

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[StreamPair]:
        async with self._inbound_recv, self._outbound_send:
            yield self._inbound_recv, self._outbound_send

    async def event_stream(self) -> AsyncIterator[dict[str, str]]:
        """Generate SSE events for the inspector's GET request.

        Yields the ``endpoint`` bootstrap event, then one ``message`` event
        per outbound message. Closes the adapter when the stream ends,
        whether because the inspector disconnected or the adapter closed.

        Yields:
            Dicts accepted by ``sse_starlette.EventSourceResponse``.
        """
        try:
            yield {"event": "endpoint", "data": self.endpoint}
            async with self._outbound_recv:
                async for message in self._outbound_recv:
                    yield {
                        "event": "message",
                        "data": message.message.model_dump_json(by_alias=True, exclude_none=True),
                    }
        finally:
            with anyio.CancelScope(shield=True):
                await self.close()

    async def handle_post(self, request: Request) -> Response:
        """Accept one JSON-RPC message POSTed by the inspector.

        Args:
            request: The inbound POST; its body is a single JSON-RPC message.

        Returns:
            202 when queued, 400 for an invalid body, 410 when the session
            has already closed.
        """
        body = await request.body()
        try:
            message = JSONRPCMessage.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("Invalid message from inspector on %s: %s", self._session_id, exc)
            return PlainTextResponse(f"Invalid message: {exc}", status_code=400)

        try:
            await self._inbound_send.send(SessionMessage(message=message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            return PlainTextResponse("Session closed", status_code=410)
        return PlainTextResponse("Accepted", status_code=202)

    async def close(self) -> None:
        """Close the adapter and stop accepting POSTs."""
        await self._inbound_send.aclose()
        await super().close()
