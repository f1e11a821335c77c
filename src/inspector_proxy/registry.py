"""Session registry for inspector-proxy.

Maps session ids to the client-facing and server-facing adapters of each
live session. One registry is created per server process and passed to
every connection handler; tests build their own.
"""

from __future__ import annotations

import logging

from inspector_proxy.adapters.base import TransportAdapter
from inspector_proxy.errors import DuplicateSessionError
from inspector_proxy.models import SessionEntry, TransportKind

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Live sessions keyed by session id.

    Mutations never suspend, so on a single event loop a registration is
    atomic with respect to any other registration for the same id.

    Example:
        >>> registry = SessionRegistry()
        >>> registry.register("abc", client_adapter, server_adapter)
        >>> registry.lookup("abc").server is server_adapter
        True
        >>> await registry.evict("abc")
    """

    def __init__(self) -> None:
        self._client_transports: dict[str, TransportAdapter] = {}
        self._server_transports: dict[str, TransportAdapter] = {}
        self._entries: dict[str, SessionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def session_ids(self) -> list[str]:
        """Ids of all registered sessions, in registration order."""
        return list(self._entries)

    def register(
        self,
        session_id: str,
        client: TransportAdapter,
        server: TransportAdapter,
        kind: TransportKind | None = None,
    ) -> SessionEntry:
        """Register a paired session.

        Args:
            session_id: Key for the session.
            client: Client-facing adapter.
            server: Server-facing adapter.
            kind: Transport kind used to reach the target.

        Returns:
            The new SessionEntry.

        Raises:
            DuplicateSessionError: If ``session_id`` is already registered.
        """
        if session_id in self._entries:
            raise DuplicateSessionError(session_id)
        entry = SessionEntry(session_id=session_id, client=client, server=server, kind=kind)
        self._client_transports[session_id] = client
        self._server_transports[session_id] = server
        self._entries[session_id] = entry
        logger.debug("Registered session %s (%d live)", session_id, len(self._entries))
        return entry

    def lookup(self, session_id: str) -> SessionEntry | None:
        """Return the entry for ``session_id``, or None if not registered."""
        return self._entries.get(session_id)

    def get_client(self, session_id: str) -> TransportAdapter | None:
        """Client-facing adapter of ``session_id``, or None."""
        return self._client_transports.get(session_id)

    def get_server(self, session_id: str) -> TransportAdapter | None:
        """Server-facing adapter of ``session_id``, or None."""
        return self._server_transports.get(session_id)

    async def evict(self, session_id: str) -> bool:
        """Remove a session and close both of its adapters.

        The entry is removed before any close is awaited, so a concurrent
        lookup never sees a half-closed session. Closing an adapter that
        already closed is a no-op.

        Args:
            session_id: Session to remove.

        Returns:
            True if the session was registered.
        """
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return False
        self._client_transports.pop(session_id, None)
        self._server_transports.pop(session_id, None)
        logger.debug("Evicting session %s (%d live)", session_id, len(self._entries))
        try:
            await entry.client.close()
        finally:
            await entry.server.close()
        return True

    async def close_all(self) -> None:
        """Evict every session."""
        for session_id in self.session_ids():
            await self.evict(session_id)
