"""Core data models for inspector-proxy.

Defines the enums shared by the transports and the forwarding engine,
connection parameters accepted by the transport factory, registry
entries, and the debug-log record format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from inspector_proxy.adapters.base import TransportAdapter


class TransportKind(StrEnum):
    """Binding used to reach a peer.

    Attributes:
        STDIO: Standard input/output of a spawned process.
        SSE: Server-Sent Events with a POST back-channel.
        STREAMABLE_HTTP: Streamable HTTP.
    """

    STDIO = "stdio"
    SSE = "sse"
    STREAMABLE_HTTP = "http"


class Side(StrEnum):
    """Which half of a session a transport belongs to.

    Attributes:
        CLIENT: Client-facing — connects the proxy to the inspector.
        SERVER: Server-facing — connects the proxy to the target.
    """

    CLIENT = "client"
    SERVER = "server"

    @property
    def peer(self) -> Side:
        """The opposite side."""
        return Side.SERVER if self is Side.CLIENT else Side.CLIENT


class LogDirection(StrEnum):
    """Event tag written to the debug log.

    Attributes:
        SEND: A message written to the transport.
        RECV: A message received from the transport.
        ERROR: An error reported by the transport.
        CLOSE: The transport closed.
    """

    SEND = "send"
    RECV = "recv"
    ERROR = "error"
    CLOSE = "close"


@dataclass
class TransportParams:
    """Connection parameters for building a transport.

    Args:
        kind: Which binding to build.
        command: Executable for stdio targets.
        args: Arguments for stdio targets.
        env: Environment overrides for stdio targets.
        url: Endpoint URL for SSE/HTTP targets.
        headers: Extra HTTP headers for SSE/HTTP targets.
    """

    kind: TransportKind
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class SessionEntry:
    """A paired client-facing/server-facing relationship in the registry.

    Args:
        session_id: Registry key.
        client: Client-facing transport.
        server: Server-facing transport.
        kind: Transport kind used to reach the target.
        created_at: When the session was registered.
    """

    session_id: str
    client: TransportAdapter
    server: TransportAdapter
    kind: TransportKind | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


class DebugLogEntry(BaseModel):
    """One line of the transport debug log.

    Args:
        hrtime: Monotonic clock in nanoseconds, as a string.
        time: Wall-clock timestamp, ISO-8601 UTC.
        pid: Process id of the writer.
        role: Role label of the logging transport.
        direction: send, recv, error, or close.
        message: The JSON-RPC message, for send/recv records.
        error: Error text, for error records.
    """

    hrtime: str
    time: str
    pid: int
    role: str
    direction: LogDirection
    message: dict[str, Any] | None = None
    error: str | None = None
