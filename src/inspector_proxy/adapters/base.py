"""Transport adapter protocol for inspector-proxy.

All transport adapters (stdio, SSE, streamable HTTP, loopback) implement
this protocol. The forwarding engine interacts only with this interface —
it never sees transport-specific details or anyio streams.

Events are pulled from an adapter with ``receive()`` rather than pushed
through assignable callbacks, so wrappers (such as the debug logger) and
the engine never compete for the same callback slot.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Protocol

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.shared.message import SessionMessage

from inspector_proxy.errors import TransportCreationError, TransportSendError

logger = logging.getLogger(__name__)

StreamPair = tuple[
    MemoryObjectReceiveStream[SessionMessage | Exception],
    MemoryObjectSendStream[SessionMessage] | None,
]


@dataclass(frozen=True)
class MessageEvent:
    """A message arrived from the peer."""

    message: SessionMessage


@dataclass(frozen=True)
class ErrorEvent:
    """The transport reported an error. Does not imply closure."""

    error: Exception


@dataclass(frozen=True)
class CloseEvent:
    """The transport closed. Always the last event an adapter delivers."""


TransportEvent = MessageEvent | ErrorEvent | CloseEvent


class TransportAdapter(Protocol):
    """Interface for transport adapters.

    Each session needs a matched pair: one client-facing (proxy acts as
    server) and one server-facing (proxy acts as client).

    Contract:
        - ``start()`` must be awaited before ``send()``; a second call is a
          no-op.
        - ``receive()`` yields events in the order they occurred. A
          CloseEvent is delivered at most once and nothing follows it.
        - ``close()`` is idempotent, releases OS resources, produces the
          CloseEvent if it has not been produced yet, and makes every later
          ``send()`` fail.
    """

    @property
    def session_id(self) -> str | None:
        """Session id for session-addressable transports, else None."""
        ...

    async def start(self) -> None:
        """Open the underlying channel and begin receiving.

        Raises:
            TransportCreationError: If the channel cannot be opened.
        """
        ...

    async def send(self, message: SessionMessage) -> None:
        """Deliver a message to the peer.

        Raises:
            TransportSendError: If the transport is closed or the peer is
                unreachable.
        """
        ...

    async def receive(self) -> TransportEvent:
        """Wait for the next event from the peer.

        Raises:
            RuntimeError: If the CloseEvent has already been delivered.
        """
        ...

    async def close(self) -> None:
        """Shut down this side of the connection. Safe to call multiple times."""
        ...


class StreamAdapter:
    """Base adapter bridging an SDK anyio stream pair to the event protocol.

    Subclasses implement ``_open_streams()`` returning an async context
    manager that yields ``(read_stream, write_stream)`` — the shape every
    MCP SDK transport exposes. Adapters that override ``send()`` may yield
    None for the write side. The context is entered and exited inside a
    single runner task, so anyio task groups inside the SDK never cross
    task boundaries even when the adapter outlives the request that
    created it.
    """

    name = "transport"

    def __init__(self) -> None:
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._write_stream: MemoryObjectSendStream[SessionMessage] | None = None
        self._runner: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False
        self._close_emitted = False
        self._close_delivered = False

    @property
    def session_id(self) -> str | None:
        """Plain adapters are not session-addressable."""
        return None

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called or the peer went away."""
        return self._closed or self._close_emitted

    def _open_streams(self) -> AbstractAsyncContextManager[StreamPair]:
        raise NotImplementedError

    async def start(self) -> None:
        """Enter the SDK transport in a runner task and wait until it is ready.

        Raises:
            TransportCreationError: If the SDK transport fails to open or the
                adapter was already closed.
        """
        if self._started:
            return
        if self._closed:
            raise TransportCreationError(f"{self.name} is closed")
        self._started = True
        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(self._run(ready), name=f"{self.name}-runner")
        await ready

    async def send(self, message: SessionMessage) -> None:
        """Write a message to the peer.

        Args:
            message: The SessionMessage to send.

        Raises:
            TransportSendError: If the adapter is not started, closed, or the
                underlying stream is broken.
        """
        if self._closed:
            raise TransportSendError(f"{self.name} is closed")
        stream = self._write_stream
        if stream is None:
            raise TransportSendError(f"{self.name} is not connected")
        try:
            await stream.send(message)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise TransportSendError(f"{self.name} is not connected") from exc

    async def receive(self) -> TransportEvent:
        """Wait for the next event.

        Raises:
            RuntimeError: If the CloseEvent has already been delivered.
        """
        if self._close_delivered:
            raise RuntimeError(f"{self.name} is closed")
        event = await self._events.get()
        if isinstance(event, CloseEvent):
            self._close_delivered = True
        return event

    async def close(self) -> None:
        """Shut down the adapter. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        stream, self._write_stream = self._write_stream, None
        if stream is not None:
            await stream.aclose()
        runner = self._runner
        if runner is not None and not runner.done():
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        self._emit(CloseEvent())

    def _emit(self, event: TransportEvent) -> None:
        if self._close_emitted:
            return
        if isinstance(event, CloseEvent):
            self._close_emitted = True
        self._events.put_nowait(event)

    async def _run(self, ready: asyncio.Future[None]) -> None:
        """Runner: hold the SDK context open and turn stream items into events.

        Args:
            ready: Resolved once the streams are open, or failed with a
                TransportCreationError if opening them raised.
        """
        try:
            async with self._open_streams() as (read_stream, write_stream):
                self._write_stream = write_stream
                ready.set_result(None)
                async for item in read_stream:
                    if isinstance(item, Exception):
                        logger.debug("%s stream reported: %s", self.name, item)
                        self._emit(ErrorEvent(item))
                        continue
                    self._emit(MessageEvent(item))
        except Exception as exc:
            if not ready.done():
                error = TransportCreationError(f"Failed to open {self.name}: {exc}")
                error.__cause__ = exc
                ready.set_exception(error)
            elif not self._closed:
                logger.debug("%s runner ended with error", self.name, exc_info=True)
                self._emit(ErrorEvent(exc))
        finally:
            self._write_stream = None
            if not ready.done():
                ready.cancel()
            self._emit(CloseEvent())
