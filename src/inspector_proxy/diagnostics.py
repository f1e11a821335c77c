"""Error classification for inspector-proxy diagnostics.

Errors from the two sides of a session are reported differently: client
errors generically, server errors matched against known conditions so
the operator gets an actionable hint. Classification only shapes log
output; it never changes what the relay does.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from enum import StrEnum

from inspector_proxy.config import ProxyConfig
from inspector_proxy.models import Side

logger = logging.getLogger(__name__)


class ErrorKind(StrEnum):
    """Diagnostic category of a transport error.

    Attributes:
        CLIENT: Any error from the client-facing side.
        ENDPOINT_NOT_FOUND: The target answered 404 on its message endpoint.
        CONNECTION_REFUSED: The target refused the connection.
        SERVER: Any other error from the server-facing side.
    """

    CLIENT = "client"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    CONNECTION_REFUSED = "connection_refused"
    SERVER = "server"


def iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc``, its causes/contexts, and members of exception groups."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            stack.extend(current.exceptions)
        if current.__cause__ is not None:
            stack.append(current.__cause__)
        if current.__context__ is not None:
            stack.append(current.__context__)


def classify_error(side: Side, exc: BaseException, config: ProxyConfig | None = None) -> ErrorKind:
    """Classify a transport error for reporting.

    Args:
        side: Which side reported the error.
        exc: The error.
        config: Supplies the match patterns. Defaults apply when omitted.

    Returns:
        The diagnostic category.
    """
    if side == Side.CLIENT:
        return ErrorKind.CLIENT
    config = config or ProxyConfig()
    for item in iter_exception_chain(exc):
        if isinstance(item, ConnectionRefusedError):
            return ErrorKind.CONNECTION_REFUSED
        text = f"{item} {item!r}"
        if any(pattern in text for pattern in config.refused_patterns):
            return ErrorKind.CONNECTION_REFUSED
        if any(pattern in text for pattern in config.not_found_patterns):
            return ErrorKind.ENDPOINT_NOT_FOUND
    return ErrorKind.SERVER


def report_error(side: Side, exc: BaseException, config: ProxyConfig | None = None) -> ErrorKind:
    """Log a transport error on the diagnostic stream.

    Returns:
        The category it was reported under.
    """
    kind = classify_error(side, exc, config)
    if kind == ErrorKind.CLIENT:
        logger.error("Error from inspector client: %s", exc)
    elif kind == ErrorKind.CONNECTION_REFUSED:
        logger.error("Connection refused. Is the MCP server running? (%s)", exc)
    elif kind == ErrorKind.ENDPOINT_NOT_FOUND:
        logger.error(
            "Connection refused. Is the MCP server running? "
            "The server returned 404 for its message endpoint (%s)",
            exc,
        )
    else:
        logger.error("Error from MCP server: %s", exc)
    return kind
