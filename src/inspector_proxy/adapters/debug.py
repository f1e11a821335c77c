"""Debug-logging decorator for transport adapters.

Wraps any TransportAdapter and records every send, receive, error, and
close to a DebugLogger. The wrapper is transparent: events and failures
of the inner adapter pass through unchanged, and logging problems never
reach the caller.
"""

from __future__ import annotations

import os

from mcp.shared.message import SessionMessage

from inspector_proxy.adapters.base import (
    CloseEvent,
    ErrorEvent,
    MessageEvent,
    TransportAdapter,
    TransportEvent,
)
from inspector_proxy.config import ProxyConfig
from inspector_proxy.debug_log import DebugLogger
from inspector_proxy.models import LogDirection


class DebugLoggingAdapter:
    """TransportAdapter that logs traffic of an inner adapter.

    The log file is opened lazily, on the first start/send/receive, and
    at most once per wrapper.

    Args:
        inner: The adapter doing the real work.
        role: Role label for the log file and entries.
        base_path: Debug-log base path.
    """

    def __init__(
        self,
        inner: TransportAdapter,
        role: str,
        base_path: str | os.PathLike[str],
    ) -> None:
        self.inner = inner
        self.debug_logger = DebugLogger(base_path, role)

    @property
    def session_id(self) -> str | None:
        return self.inner.session_id

    async def start(self) -> None:
        await self.debug_logger.initialize()
        await self.inner.start()

    async def send(self, message: SessionMessage) -> None:
        await self.debug_logger.initialize()
        await self.debug_logger.log_message(LogDirection.SEND, message.message)
        await self.inner.send(message)

    async def receive(self) -> TransportEvent:
        event = await self.inner.receive()
        await self.debug_logger.initialize()
        if isinstance(event, MessageEvent):
            await self.debug_logger.log_message(LogDirection.RECV, event.message.message)
        elif isinstance(event, ErrorEvent):
            await self.debug_logger.log_error(event.error)
        elif isinstance(event, CloseEvent):
            await self.debug_logger.log_close()
        return event

    async def close(self) -> None:
        await self.debug_logger.log_close()
        await self.inner.close()


def wrap_with_debug_logging(
    adapter: TransportAdapter,
    role: str,
    config: ProxyConfig,
) -> TransportAdapter:
    """Wrap ``adapter`` with debug logging if the config enables it.

    Args:
        adapter: The adapter to wrap.
        role: Role label for the log file.
        config: Proxy configuration; ``debug_file`` enables logging.

    Returns:
        A DebugLoggingAdapter, or ``adapter`` itself when logging is off.
    """
    if config.debug_file is None:
        return adapter
    return DebugLoggingAdapter(adapter, role, config.debug_file)


def unwrap(adapter: TransportAdapter) -> TransportAdapter:
    """Return the adapter underneath any debug-logging wrappers."""
    while isinstance(adapter, DebugLoggingAdapter):
        adapter = adapter.inner
    return adapter
