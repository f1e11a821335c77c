"""HTTP connection endpoints for inspector-proxy.

Accepts inspector connections over SSE and streamable HTTP, builds the
server-facing adapter for the requested target, registers the pair, and
hands it to the forwarding engine. Requests for an existing session are
routed to that session's client-facing adapter.

Routes:
    GET  /health                  liveness and live-session count
    GET  /sse, /stdio             new SSE session (target from query params)
    POST /message?sessionId=...   inspector -> proxy messages for an SSE session
    *    /mcp                     streamable HTTP (new session, or routed by
                                  the mcp-session-id header)
    DELETE /sessions/{id}         external disconnect
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from inspector_proxy.adapters.base import TransportAdapter
from inspector_proxy.adapters.debug import unwrap, wrap_with_debug_logging
from inspector_proxy.adapters.http import StreamableHttpClientAdapter
from inspector_proxy.adapters.sse import SseClientAdapter
from inspector_proxy.config import ProxyConfig
from inspector_proxy.errors import DuplicateSessionError, TransportCreationError
from inspector_proxy.factory import create_transport
from inspector_proxy.models import SessionEntry, Side, TransportKind, TransportParams
from inspector_proxy.pipeline import PipelineSession, run_pipeline
from inspector_proxy.registry import SessionRegistry

logger = logging.getLogger(__name__)

MESSAGE_PATH = "/message"

# Inbound headers passed on to network targets
_FORWARDED_HEADERS = ("authorization",)


def params_from_request(
    request: Request,
    default_kind: TransportKind | None = None,
) -> TransportParams:
    """Read target connection parameters from a request's query string.

    Query parameters: ``transportType``, ``command``, ``args`` (one
    shell-quoted string), ``env`` (JSON object), ``url``.

    Raises:
        ValueError: If a parameter is missing or malformed.
    """
    query = request.query_params
    raw_kind = query.get("transportType") or (default_kind.value if default_kind else None)
    if not raw_kind:
        raise ValueError("transportType is required")
    kind = TransportKind(raw_kind)

    env: dict[str, str] = {}
    if query.get("env"):
        decoded = json.loads(query["env"])
        if not isinstance(decoded, dict):
            raise ValueError("env must be a JSON object")
        env = {str(k): str(v) for k, v in decoded.items()}

    headers = {
        name: request.headers[name] for name in _FORWARDED_HEADERS if name in request.headers
    }

    return TransportParams(
        kind=kind,
        command=query.get("command") or None,
        args=shlex.split(query.get("args", "")),
        env=env,
        url=query.get("url") or None,
        headers=headers,
    )


class ProxyServer:
    """Owns the session registry and the relay tasks of one server process.

    Args:
        config: Proxy configuration. Defaults to the environment.
        registry: Session registry. A fresh one is created when omitted.
    """

    def __init__(
        self,
        config: ProxyConfig | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.config = config or ProxyConfig.from_env()
        self.registry = registry or SessionRegistry()
        self._relays: set[asyncio.Task[None]] = set()

    async def open_session(
        self,
        client: TransportAdapter,
        params: TransportParams,
    ) -> SessionEntry:
        """Connect to the target, register the pair, and start relaying.

        Args:
            client: Unstarted client-facing adapter for the inspector.
            params: Target connection parameters.

        Returns:
            The registered session.

        Raises:
            TransportCreationError: If the target cannot be reached.
            DuplicateSessionError: If the client's session id is taken.
        """
        server = create_transport(params, self.config, role=Side.SERVER.value)
        try:
            await server.start()
        except TransportCreationError:
            await server.close()
            raise

        client = wrap_with_debug_logging(client, Side.CLIENT.value, self.config)
        try:
            await client.start()
            session_id = client.session_id
            if session_id is None:
                raise TransportCreationError("Client-facing transport has no session id")
            entry = self.registry.register(session_id, client, server, kind=params.kind)
        except Exception:
            await client.close()
            await server.close()
            raise

        logger.info("New %s session %s", params.kind, entry.session_id)
        task = asyncio.create_task(self._relay(entry), name=f"relay-{entry.session_id}")
        self._relays.add(task)
        task.add_done_callback(self._relays.discard)
        return entry

    async def _relay(self, entry: SessionEntry) -> None:
        session = PipelineSession(config=self.config, session_id=entry.session_id)
        try:
            await run_pipeline(entry.client, entry.server, session)
        finally:
            await self.registry.evict(entry.session_id)
            logger.info("Session %s closed", entry.session_id)

    async def shutdown(self) -> None:
        """Evict every session and wait for the relays to finish."""
        await self.registry.close_all()
        if self._relays:
            await asyncio.gather(*self._relays, return_exceptions=True)

    # -- endpoints ---------------------------------------------------------

    async def health(self, request: Request) -> Response:
        return JSONResponse({"status": "ok", "sessions": len(self.registry)})

    async def sse(self, request: Request) -> Response:
        """Open an SSE session for the inspector."""
        default_kind = TransportKind.STDIO if request.url.path.endswith("/stdio") else None
        try:
            params = params_from_request(request, default_kind)
        except ValueError as exc:
            return PlainTextResponse(f"Invalid connection parameters: {exc}", status_code=400)

        client = SseClientAdapter(message_path=MESSAGE_PATH)
        try:
            await self.open_session(client, params)
        except (TransportCreationError, DuplicateSessionError) as exc:
            logger.error("Failed to open SSE session: %s", exc)
            return PlainTextResponse(str(exc), status_code=500)

        return EventSourceResponse(client.event_stream())

    async def message(self, request: Request) -> Response:
        """Deliver an inspector POST to its SSE session."""
        session_id = request.query_params.get("sessionId")
        entry = self.registry.lookup(session_id) if session_id else None
        client = unwrap(entry.client) if entry is not None else None
        if not isinstance(client, SseClientAdapter):
            return PlainTextResponse("Session not found", status_code=404)
        return await client.handle_post(request)

    async def disconnect(self, request: Request) -> Response:
        """Evict a session on behalf of an external caller."""
        if await self.registry.evict(request.path_params["session_id"]):
            return Response(status_code=204)
        return PlainTextResponse("Session not found", status_code=404)

    async def streamable_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI endpoint for streamable HTTP inspector requests."""
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if session_id:
            entry = self.registry.lookup(session_id)
            client = unwrap(entry.client) if entry is not None else None
            if not isinstance(client, StreamableHttpClientAdapter):
                await PlainTextResponse("Session not found", status_code=404)(scope, receive, send)
                return
            await client.handle_request(scope, receive, send)
            return

        if request.method != "POST":
            response = PlainTextResponse(
                f"Missing {MCP_SESSION_ID_HEADER} header", status_code=400
            )
            await response(scope, receive, send)
            return

        try:
            params = params_from_request(request)
        except ValueError as exc:
            response = PlainTextResponse(f"Invalid connection parameters: {exc}", status_code=400)
            await response(scope, receive, send)
            return

        client = StreamableHttpClientAdapter()
        try:
            await self.open_session(client, params)
        except (TransportCreationError, DuplicateSessionError) as exc:
            logger.error("Failed to open streamable HTTP session: %s", exc)
            await PlainTextResponse(str(exc), status_code=500)(scope, receive, send)
            return
        await client.handle_request(scope, receive, send)

    @asynccontextmanager
    async def lifespan(self, app: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await self.shutdown()

    def build_app(self) -> Starlette:
        """Create the Starlette application serving this proxy."""
        return Starlette(
            routes=[
                Route("/health", self.health, methods=["GET"]),
                Route("/sse", self.sse, methods=["GET"]),
                Route("/stdio", self.sse, methods=["GET"]),
                Route(MESSAGE_PATH, self.message, methods=["POST"]),
                Route(
                    "/mcp",
                    _AsgiEndpoint(self.streamable_http),
                    methods=["GET", "POST", "DELETE"],
                ),
                Route("/sessions/{session_id}", self.disconnect, methods=["DELETE"]),
            ],
            lifespan=self.lifespan,
        )


class _AsgiEndpoint:
    """Marks a coroutine as a raw ASGI app so Starlette does not wrap it."""

    def __init__(self, handler: Callable[[Scope, Receive, Send], Awaitable[None]]) -> None:
        self._handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._handler(scope, receive, send)
