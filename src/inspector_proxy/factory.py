"""Transport factory for inspector-proxy.

Builds the server-facing adapter for a target from connection
parameters: resolves the real executable for stdio targets and
normalizes URLs for network targets. No retries — a failure is reported
to the caller as a TransportCreationError.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
from pathlib import Path
from typing import TextIO
from urllib.parse import urlsplit, urlunsplit

from mcp.client.stdio import get_default_environment

from inspector_proxy.adapters.base import TransportAdapter
from inspector_proxy.adapters.debug import wrap_with_debug_logging
from inspector_proxy.adapters.http import StreamableHttpServerAdapter
from inspector_proxy.adapters.sse import SseServerAdapter
from inspector_proxy.adapters.stdio import StdioServerAdapter
from inspector_proxy.config import ProxyConfig
from inspector_proxy.errors import TransportCreationError
from inspector_proxy.models import Side, TransportKind, TransportParams

logger = logging.getLogger(__name__)

SSE_PATH = "/sse"
MCP_PATH = "/mcp"


def create_transport(
    params: TransportParams,
    config: ProxyConfig | None = None,
    role: str = Side.SERVER.value,
    errlog: TextIO | None = None,
) -> TransportAdapter:
    """Build a server-facing adapter for ``params``.

    The adapter is returned unstarted; opening the channel (spawning the
    process, connecting) happens in ``start()``.

    Args:
        params: Target connection parameters.
        config: Proxy configuration. Defaults to the environment.
        role: Debug-log role label.
        errlog: Destination for a stdio target's stderr.

    Returns:
        The adapter, wrapped with debug logging when enabled.

    Raises:
        TransportCreationError: On a missing command, unresolvable
            executable, malformed URL, or unsupported kind.
    """
    config = config or ProxyConfig.from_env()
    try:
        kind = TransportKind(params.kind)
    except ValueError as exc:
        raise TransportCreationError(f"Unsupported transport type: {params.kind}") from exc

    adapter: TransportAdapter
    if kind == TransportKind.STDIO:
        adapter = _create_stdio(params, errlog)
    elif kind == TransportKind.SSE:
        adapter = SseServerAdapter(normalize_url(params.url, SSE_PATH), headers=params.headers)
    else:
        adapter = StreamableHttpServerAdapter(
            normalize_url(params.url, MCP_PATH), headers=params.headers
        )

    return wrap_with_debug_logging(adapter, role, config)


def _create_stdio(params: TransportParams, errlog: TextIO | None) -> StdioServerAdapter:
    if not params.command:
        raise TransportCreationError("Command is required for stdio transport")
    command, args = resolve_executable(params.command, list(params.args))
    env = build_environment(params.env)
    logger.debug("Spawning stdio target: %s", shlex.join([command, *args]))
    return StdioServerAdapter(command=command, args=args, env=env, errlog=errlog)


def build_environment(overrides: dict[str, str] | None = None) -> dict[str, str]:
    """Environment for a spawned target.

    The proxy's own environment, then the SDK's minimal default
    environment, then explicit overrides — later sources win.
    """
    env = dict(os.environ)
    env.update(get_default_environment())
    if overrides:
        env.update(overrides)
    return env


def resolve_executable(command: str, args: list[str]) -> tuple[str, list[str]]:
    """Find the program that will actually run ``command``.

    Looks ``command`` up on PATH. A script with a ``#!`` line that cannot be
    executed directly (no execute bit, or Windows) is launched through the
    interpreter named in its shebang, with the script prepended to the args.

    Args:
        command: Nominal command name or path.
        args: Arguments for the command.

    Returns:
        ``(executable, args)`` ready to spawn.

    Raises:
        TransportCreationError: If the command cannot be found.
    """
    resolved = shutil.which(command)
    if resolved is None:
        # which() skips files without an execute bit; scripts may still run via shebang
        if os.sep not in command or not Path(command).is_file():
            raise TransportCreationError(f"Command not found: {command}")
        resolved = command

    if os.name != "nt" and os.access(resolved, os.X_OK):
        return resolved, args

    shebang = _read_shebang(Path(resolved))
    if not shebang:
        return resolved, args

    interpreter, *interpreter_args = shebang
    if Path(interpreter).name == "env" and interpreter_args:
        # "#!/usr/bin/env python3 -u" names the interpreter as the first argument
        interpreter, *interpreter_args = interpreter_args
    interpreter_path = shutil.which(interpreter) or shutil.which(Path(interpreter).name)
    if interpreter_path is None:
        raise TransportCreationError(f"Interpreter not found for {resolved}: {interpreter}")
    return interpreter_path, [*interpreter_args, resolved, *args]


def _read_shebang(path: Path) -> list[str]:
    try:
        with path.open("rb") as fh:
            first_line = fh.readline(256)
    except OSError:
        return []
    if not first_line.startswith(b"#!"):
        return []
    return first_line[2:].decode("utf-8", errors="replace").split()


def normalize_url(url: str | None, path: str) -> str:
    """Point ``url`` at ``path`` unless its path already ends with it.

    The path is replaced rather than appended, and query/fragment are
    dropped: ``http://host:3000/`` becomes ``http://host:3000/sse``.

    Args:
        url: The URL supplied by the caller.
        path: Conventional endpoint path, e.g. ``/sse`` or ``/mcp``.

    Returns:
        The normalized URL.

    Raises:
        TransportCreationError: If the URL is missing or malformed.
    """
    if not url:
        raise TransportCreationError("URL is required for network transports")
    try:
        parts = urlsplit(url.strip())
        # Accessing .port validates it
        _ = parts.port
    except ValueError as exc:
        raise TransportCreationError(f"Invalid URL {url!r}: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise TransportCreationError(f"Invalid URL {url!r}: expected an http(s) URL")

    if parts.path.endswith(path):
        return urlunsplit(parts)
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))
