"""Exception hierarchy for inspector-proxy.

Failures are split by blast radius: creation errors abort a connection
attempt, send errors affect a single message, and duplicate-session
errors are registry conflicts the caller resolves.
"""

from __future__ import annotations


class ProxyError(Exception):
    """Base class for all inspector-proxy errors."""


class TransportCreationError(ProxyError):
    """A transport could not be built or opened.

    Raised for malformed URLs, missing commands, unresolvable executables,
    and spawn or connect failures. The underlying exception, if any, is
    chained as ``__cause__``. Never retried by the proxy.
    """


class TransportSendError(ProxyError):
    """A message could not be delivered over a transport.

    The transport is closed or its peer is unreachable. Recoverable per
    message: the session stays up.
    """


class DuplicateSessionError(ProxyError):
    """A session id is already registered.

    Args:
        session_id: The conflicting session id.
    """

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id!r} is already registered")
        self.session_id = session_id
