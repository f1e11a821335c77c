"""In-process loopback adapters for inspector-proxy.

Two adapters wired back to back over anyio memory streams: whatever one
sends, the other receives. Closing either end ends the peer's read stream,
so the peer closes too — the same behavior as a dropped socket.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.shared.message import SessionMessage

from inspector_proxy.adapters.base import StreamAdapter, StreamPair


class LoopbackAdapter(StreamAdapter):
    """One end of a loopback pair. Build pairs with ``create_loopback_pair()``."""

    name = "loopback"

    def __init__(
        self,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        session_id: str | None = None,
    ) -> None:
        super().__init__()
        self._read_stream = read_stream
        self._loop_write_stream = write_stream
        self._session_id = session_id

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[StreamPair]:
        async with self._read_stream, self._loop_write_stream:
            yield self._read_stream, self._loop_write_stream


def create_loopback_pair(
    buffer_size: int = 16,
    session_id: str | None = None,
) -> tuple[LoopbackAdapter, LoopbackAdapter]:
    """Create two connected loopback adapters.

    Args:
        buffer_size: Messages each direction can hold before ``send`` waits.
        session_id: Optional session id exposed by both ends.

    Returns:
        ``(a, b)`` where messages sent on ``a`` are received on ``b`` and
        vice versa.
    """
    a_to_b_send, a_to_b_recv = anyio.create_memory_object_stream[SessionMessage | Exception](
        buffer_size
    )
    b_to_a_send, b_to_a_recv = anyio.create_memory_object_stream[SessionMessage | Exception](
        buffer_size
    )
    a = LoopbackAdapter(b_to_a_recv, a_to_b_send, session_id=session_id)  # type: ignore[arg-type]
    b = LoopbackAdapter(a_to_b_recv, b_to_a_send, session_id=session_id)  # type: ignore[arg-type]
    return a, b
