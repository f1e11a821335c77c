"""Transport adapters — bridge SDK anyio streams to the proxy's event protocol."""

from inspector_proxy.adapters.base import (
    CloseEvent,
    ErrorEvent,
    MessageEvent,
    StreamAdapter,
    TransportAdapter,
    TransportEvent,
)
from inspector_proxy.adapters.debug import DebugLoggingAdapter, unwrap, wrap_with_debug_logging
from inspector_proxy.adapters.http import StreamableHttpClientAdapter, StreamableHttpServerAdapter
from inspector_proxy.adapters.loopback import LoopbackAdapter, create_loopback_pair
from inspector_proxy.adapters.remote import RemoteAdapter
from inspector_proxy.adapters.sse import SseClientAdapter, SseServerAdapter
from inspector_proxy.adapters.stdio import StdioClientAdapter, StdioServerAdapter

__all__ = [
    "CloseEvent",
    "DebugLoggingAdapter",
    "ErrorEvent",
    "LoopbackAdapter",
    "MessageEvent",
    "RemoteAdapter",
    "SseClientAdapter",
    "SseServerAdapter",
    "StdioClientAdapter",
    "StdioServerAdapter",
    "StreamAdapter",
    "StreamableHttpClientAdapter",
    "StreamableHttpServerAdapter",
    "TransportAdapter",
    "TransportEvent",
    "create_loopback_pair",
    "unwrap",
    "wrap_with_debug_logging",
]
