"""JSON-RPC field extraction and envelope helpers.

Insulates the rest of the codebase from the MCP SDK's JSONRPCMessage
internal structure. The forwarding engine only needs to know whether a
message can be answered, and how to build the error it answers with.
"""

from __future__ import annotations

from typing import Any, cast

from mcp.shared.message import SessionMessage
from mcp.types import (
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)


def extract_jsonrpc_id(message: JSONRPCMessage) -> str | int | None:
    """Extract the JSON-RPC id field from a message.

    Args:
        message: A JSONRPCMessage (RootModel wrapping a request, response,
            notification, or error).

    Returns:
        The id value for requests, responses, and errors.
        None for notifications.
    """
    root = message.root
    if isinstance(root, JSONRPCRequest | JSONRPCResponse | JSONRPCError):
        return cast(str | int, root.id)
    return None


def extract_method(message: JSONRPCMessage) -> str | None:
    """Extract the JSON-RPC method field from a message.

    Returns:
        The method for requests and notifications, None otherwise.
    """
    root = message.root
    if isinstance(root, JSONRPCRequest | JSONRPCNotification):
        return cast(str, root.method)
    return None


def is_answerable(message: JSONRPCMessage) -> bool:
    """Check if the message expects exactly one response.

    Only requests qualify. Responses and errors carry an id too, but
    nobody is waiting on a reply to them.

    Args:
        message: A JSONRPCMessage to classify.

    Returns:
        True if the message is a request.
    """
    return isinstance(message.root, JSONRPCRequest)


def describe(message: JSONRPCMessage) -> str:
    """Short human-readable label for diagnostics, e.g. ``tools/list (id=3)``."""
    method = extract_method(message) or "(response)"
    msg_id = extract_jsonrpc_id(message)
    if msg_id is None:
        return method
    return f"{method} (id={msg_id})"


def to_dict(message: JSONRPCMessage) -> dict[str, Any]:
    """Serialize a message the way it appears on the wire."""
    return message.model_dump(by_alias=True, mode="json", exclude_none=True)


def make_error_response(
    request_id: str | int,
    code: int,
    text: str,
    data: Any | None = None,
) -> SessionMessage:
    """Build a JSON-RPC error response correlated to ``request_id``.

    Args:
        request_id: Id of the request being answered.
        code: JSON-RPC error code.
        text: Human-readable error message.
        data: Optional structured error detail.

    Returns:
        A SessionMessage ready to send to the requester.
    """
    return SessionMessage(
        message=JSONRPCMessage(
            JSONRPCError(
                jsonrpc="2.0",
                id=request_id,
                error=ErrorData(code=code, message=text, data=data),
            )
        )
    )
