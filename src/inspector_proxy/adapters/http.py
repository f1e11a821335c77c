"""Streamable HTTP transport adapters for inspector-proxy.

StreamableHttpServerAdapter connects to a target over streamable HTTP:
each message is POSTed to the MCP endpoint, and the answer comes back as
JSON or as an SSE stream on that POST. The session id the target assigns
on handshake is carried on every later request.
StreamableHttpClientAdapter wraps the SDK's ``StreamableHTTPServerTransport``
— the proxy serves the inspector, and every request carrying this
adapter's session id is routed to ``handle_request()``.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Any

import httpx
from httpx_sse import EventSource, SSEError, aconnect_sse
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage, JSONRPCResponse
from starlette.types import Receive, Scope, Send

from inspector_proxy.adapters.base import StreamAdapter, StreamPair
from inspector_proxy.adapters.remote import RemoteAdapter, message_payload
from inspector_proxy.correlation import extract_method

logger = logging.getLogger(__name__)

PROTOCOL_VERSION_HEADER = "mcp-protocol-version"
JSON_CONTENT = "application/json"
SSE_CONTENT = "text/event-stream"


class StreamableHttpServerAdapter(RemoteAdapter):
    """Server-facing adapter — proxy connects to a target via streamable HTTP.

    Once the inspector's ``notifications/initialized`` has been accepted,
    a GET stream is opened for messages the target sends on its own;
    targets that answer it with 405 simply do without.

    Args:
        url: Full URL of the target's MCP endpoint.
        headers: Extra HTTP headers sent on every request.
        **kwargs: Timeouts and transport, as for RemoteAdapter.
    """

    name = "http-server"

    def __init__(self, url: str, headers: dict[str, str] | None = None, **kwargs: Any) -> None:
        super().__init__(url, headers, **kwargs)
        self._session_id: str | None = None
        self._protocol_version: str | None = None
        self._listening = False

    @property
    def session_id(self) -> str | None:
        """Session id assigned by the target, once the handshake completed."""
        return self._session_id

    def _session_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._session_id:
            headers[MCP_SESSION_ID_HEADER] = self._session_id
        if self._protocol_version:
            headers[PROTOCOL_VERSION_HEADER] = self._protocol_version
        return headers

    async def _post(self, client: httpx.AsyncClient, message: SessionMessage) -> None:
        headers = {
            "accept": f"{JSON_CONTENT}, {SSE_CONTENT}",
            "content-type": JSON_CONTENT,
            **self._session_headers(),
        }
        request = client.build_request(
            "POST", self.url, json=message_payload(message), headers=headers
        )
        response = await client.send(request, stream=True)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            await response.aclose()
            raise

        session_id = response.headers.get(MCP_SESSION_ID_HEADER)
        if session_id:
            self._session_id = session_id

        if response.status_code == 202:
            await response.aclose()
        else:
            self._spawn(self._read_response(response), "response")

        if extract_method(message.message) == "notifications/initialized" and not self._listening:
            self._listening = True
            self._spawn(self._listen(client), "listen")

    async def _read_response(self, response: httpx.Response) -> None:
        """Feed the messages carried by one POST response."""
        content_type = response.headers.get("content-type", "").partition(";")[0].strip()
        try:
            if content_type == JSON_CONTENT:
                body = await response.aread()
                if body.strip():
                    await self._feed_json(body)
            elif content_type == SSE_CONTENT:
                await self._pump_events(EventSource(response))
            else:
                await self._feed(ValueError(f"Unexpected content type: {content_type or 'none'}"))
        except (httpx.HTTPError, SSEError) as exc:
            logger.debug("%s response stream failed: %s", self.name, exc)
            await self._feed(exc)
        finally:
            await response.aclose()

    async def _listen(self, client: httpx.AsyncClient) -> None:
        """Hold the GET stream for server-initiated messages."""
        try:
            async with aconnect_sse(
                client, "GET", self.url, headers=self._session_headers()
            ) as event_source:
                if event_source.response.status_code == 405:
                    logger.debug("%s target offers no GET stream", self.name)
                    return
                event_source.response.raise_for_status()
                await self._pump_events(event_source)
        except (httpx.HTTPError, SSEError) as exc:
            logger.debug("%s GET stream ended: %s", self.name, exc)

    def _observe(self, message: JSONRPCMessage) -> None:
        root = message.root
        if isinstance(root, JSONRPCResponse) and "protocolVersion" in root.result:
            self._protocol_version = str(root.result["protocolVersion"])

    async def close(self) -> None:
        """End the target session with a DELETE, then shut down the adapter."""
        if self._closed:
            return
        client = self._client
        if client is not None and self._session_id:
            try:
                await client.delete(self.url, headers=self._session_headers())
            except httpx.HTTPError as exc:
                logger.debug("%s session DELETE failed: %s", self.name, exc)
        await super().close()


class StreamableHttpClientAdapter(StreamAdapter):
    """Client-facing adapter — the inspector connects via streamable HTTP.

    Args:
        session_id: Id assigned to the inspector's session. Generated when
            omitted.
        json_response: Answer POSTs with plain JSON instead of an SSE stream.
    """

    name = "http-client"

    def __init__(self, session_id: str | None = None, json_response: bool = False) -> None:
        super().__init__()
        self._session_id = session_id or uuid.uuid4().hex
        self._sdk_transport = StreamableHTTPServerTransport(
            mcp_session_id=self._session_id,
            is_json_response_enabled=json_response,
        )

    @property
    def session_id(self) -> str:
        """Id carried in the ``mcp-session-id`` header."""
        return self._session_id

    def _open_streams(self) -> AbstractAsyncContextManager[StreamPair]:
        return self._sdk_transport.connect()

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve one inspector HTTP request (POST, GET, or DELETE)."""
        await self._sdk_transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        """Terminate the SDK session, then shut down the adapter."""
        if self._closed:
            return
        await self._sdk_transport.terminate()
        await super().close()
