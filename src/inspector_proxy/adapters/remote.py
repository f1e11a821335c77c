"""Shared plumbing for server-facing adapters that reach a target over HTTP.

Each outbound message is POSTed from ``send()`` itself, so a refused
connection or an error status reaches the caller as TransportSendError
and the adapter keeps running. Everything the target sends back, on a
POST response or on a long-lived event stream, is fed to the runner's
read stream and surfaces as events in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

import anyio
import httpx
from anyio.streams.memory import MemoryObjectSendStream
from httpx_sse import EventSource
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage
from pydantic import ValidationError

from inspector_proxy.adapters.base import StreamAdapter, StreamPair
from inspector_proxy.errors import TransportSendError

logger = logging.getLogger(__name__)

# Same limits the SDK's HTTP clients use
DEFAULT_TIMEOUT = 30.0
DEFAULT_SSE_READ_TIMEOUT = 300.0


def message_payload(message: SessionMessage) -> dict[str, Any]:
    """JSON body for one outbound message."""
    return message.message.model_dump(by_alias=True, mode="json", exclude_none=True)


class RemoteAdapter(StreamAdapter):
    """Base for adapters that POST each message to an HTTP target.

    Subclasses implement ``_post()`` and may override ``_connect()`` to
    open a long-lived stream before the adapter reports ready.

    Args:
        url: Full URL of the target endpoint.
        headers: Extra HTTP headers sent on every request.
        timeout: Connect and write timeout in seconds.
        sse_read_timeout: Seconds to wait for the next event on a stream.
        transport: httpx transport to use instead of the network.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        sse_read_timeout: float = DEFAULT_SSE_READ_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.headers = dict(headers or {})
        self._timeout = httpx.Timeout(timeout, read=sse_read_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._inbound: MemoryObjectSendStream[SessionMessage | Exception] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[StreamPair]:
        inbound_send, inbound_recv = anyio.create_memory_object_stream[
            SessionMessage | Exception
        ](0)
        client = httpx.AsyncClient(
            headers=self.headers,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )
        async with client, inbound_send, inbound_recv:
            self._inbound = inbound_send
            try:
                await self._connect(client)
                self._client = client
                # send() bypasses the write stream.
                yield inbound_recv, None
            finally:
                self._client = None
                self._inbound = None
                await self._cancel_tasks()

    async def _connect(self, client: httpx.AsyncClient) -> None:
        """Open whatever the target needs before the first POST."""

    async def _post(self, client: httpx.AsyncClient, message: SessionMessage) -> None:
        raise NotImplementedError

    async def send(self, message: SessionMessage) -> None:
        """POST a message to the target and wait for it to be accepted.

        Args:
            message: The SessionMessage to send.

        Raises:
            TransportSendError: If the adapter is not started or closed, the
                connection fails, or the target answers with an error status.
        """
        if self._closed:
            raise TransportSendError(f"{self.name} is closed")
        client = self._client
        if client is None:
            raise TransportSendError(f"{self.name} is not connected")
        try:
            await self._post(client, message)
        except httpx.HTTPError as exc:
            raise TransportSendError(f"POST to {self.url} failed: {exc}") from exc

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=f"{self.name}-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _feed(self, item: SessionMessage | Exception) -> None:
        inbound = self._inbound
        if inbound is None:
            return
        try:
            await inbound.send(item)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("%s dropped inbound item after close", self.name)

    async def _end_of_stream(self) -> None:
        """Close the read stream so the runner ends and emits CloseEvent."""
        inbound = self._inbound
        if inbound is not None:
            await inbound.aclose()

    async def _feed_json(self, data: str | bytes) -> None:
        try:
            message = JSONRPCMessage.model_validate_json(data)
        except ValidationError as exc:
            logger.warning("Invalid message from %s: %s", self.url, exc)
            await self._feed(exc)
            return
        self._observe(message)
        await self._feed(SessionMessage(message=message))

    def _observe(self, message: JSONRPCMessage) -> None:
        """Hook called with each parsed inbound message before it is fed."""

    async def _pump_events(self, event_source: EventSource) -> None:
        async for sse in event_source.aiter_sse():
            if sse.event == "message" and sse.data:
                await self._feed_json(sse.data)
