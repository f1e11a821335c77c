"""stdio transport adapters for inspector-proxy.

StdioServerAdapter wraps ``stdio_client()`` — spawns the target MCP server.
StdioClientAdapter wraps ``stdio_server()`` — the proxy IS the subprocess,
and its own stdin/stdout face the inspector.
"""

from __future__ import annotations

import sys
from contextlib import AbstractAsyncContextManager
from typing import TextIO

from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.server.stdio import stdio_server

from inspector_proxy.adapters.base import StreamAdapter, StreamPair


class StdioServerAdapter(StreamAdapter):
    """Server-facing adapter — proxy connects to a real MCP server via stdio.

    The child's stderr is not protocol traffic; it is passed straight to
    ``errlog`` (the proxy's own stderr by default) for diagnostics.

    Args:
        command: Executable to run as the MCP server.
        args: Command-line arguments for the server.
        env: Environment variables for the subprocess (None uses SDK defaults).
        cwd: Working directory for the subprocess.
        errlog: Where the child's stderr goes.

    Example:
        adapter = StdioServerAdapter(command="python", args=["server.py"])
        await adapter.start()
        await adapter.send(request)
        event = await adapter.receive()
    """

    name = "stdio-server"

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        errlog: TextIO | None = None,
    ) -> None:
        super().__init__()
        self._server_params = StdioServerParameters(
            command=command,
            args=args or [],
            env=env,
            cwd=cwd,
        )
        self._errlog = errlog

    @property
    def server_params(self) -> StdioServerParameters:
        """Launch parameters of the target process."""
        return self._server_params

    def _open_streams(self) -> AbstractAsyncContextManager[StreamPair]:
        return stdio_client(self._server_params, errlog=self._errlog or sys.stderr)


class StdioClientAdapter(StreamAdapter):
    """Client-facing adapter — the inspector talks to the proxy via stdio.

    Reads from the proxy's own stdin and writes to stdout, acting as the
    MCP server from the client's perspective.
    """

    name = "stdio-client"

    def _open_streams(self) -> AbstractAsyncContextManager[StreamPair]:
        return stdio_server()
