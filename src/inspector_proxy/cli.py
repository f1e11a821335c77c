"""CLI entry point for inspector-proxy."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from inspector_proxy.config import ProxyConfig
from inspector_proxy.models import TransportKind, TransportParams

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _load_config(debug_file: str | None) -> ProxyConfig:
    """Environment config with CLI overrides applied."""
    try:
        config = ProxyConfig.from_env()
    except ValueError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc
    if debug_file:
        config = config.model_copy(update={"debug_file": Path(debug_file)})
    return config


def _parse_env(pairs: tuple[str, ...]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


@click.group()
@click.version_option(package_name="inspector-proxy")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    help="Diagnostic log level (written to stderr).",
)
def main(log_level: str) -> None:
    """Debugging proxy between an MCP inspector and a target server."""
    # stdout may carry protocol traffic; diagnostics always go to stderr.
    logging.basicConfig(stream=sys.stderr, level=log_level.upper(), format=LOG_FORMAT)


@main.command()
@click.option("--host", type=str, default="127.0.0.1", help="Interface to listen on.")
@click.option("--port", type=int, default=6277, help="Port to listen on.")
@click.option("--debug-file", type=click.Path(), help="Base path for transport debug logs.")
def serve(host: str, port: int, debug_file: str | None) -> None:
    """Serve SSE and streamable HTTP endpoints for inspector clients."""
    import uvicorn

    from inspector_proxy.server import ProxyServer

    config = _load_config(debug_file)
    app = ProxyServer(config=config).build_app()
    click.echo(f"inspector-proxy listening on http://{host}:{port}", err=True)
    uvicorn.run(app, host=host, port=port, log_config=None)


@main.command()
@click.option(
    "--transport",
    type=click.Choice([kind.value for kind in TransportKind], case_sensitive=False),
    required=True,
    help="Transport used to reach the target.",
)
@click.option("--target-command", type=str, help="Server command (stdio only).")
@click.option("--target-url", type=str, help="Server URL (SSE/HTTP only).")
@click.option("--env", "-e", "env_pairs", multiple=True, help="KEY=VALUE for the target (stdio).")
@click.option("--debug-file", type=click.Path(), help="Base path for transport debug logs.")
def stdio(
    transport: str,
    target_command: str | None,
    target_url: str | None,
    env_pairs: tuple[str, ...],
    debug_file: str | None,
) -> None:
    """Relay this process's stdin/stdout to a target server."""
    import asyncio
    import shlex

    kind = TransportKind(transport.lower())
    if kind == TransportKind.STDIO and not target_command:
        raise click.UsageError("--target-command is required for stdio transport.")
    if kind != TransportKind.STDIO and not target_url:
        raise click.UsageError("--target-url is required for SSE/HTTP transport.")

    params = TransportParams(kind=kind, url=target_url, env=_parse_env(env_pairs))
    if target_command:
        parts = shlex.split(target_command)
        params.command = parts[0]
        params.args = parts[1:]

    config = _load_config(debug_file)
    asyncio.run(_run_stdio_relay(params, config))


async def _run_stdio_relay(params: TransportParams, config: ProxyConfig) -> None:
    """Connect to the target, then relay it to our own stdio until either side closes.

    Args:
        params: Target connection parameters.
        config: Proxy configuration.
    """
    from inspector_proxy.adapters.debug import wrap_with_debug_logging
    from inspector_proxy.adapters.stdio import StdioClientAdapter
    from inspector_proxy.errors import TransportCreationError
    from inspector_proxy.factory import create_transport
    from inspector_proxy.models import Side
    from inspector_proxy.pipeline import PipelineSession, run_pipeline

    try:
        server = create_transport(params, config, role=Side.SERVER.value)
        await server.start()
    except TransportCreationError as exc:
        raise click.ClickException(str(exc)) from exc

    client = wrap_with_debug_logging(StdioClientAdapter(), Side.CLIENT.value, config)
    try:
        await client.start()
    except TransportCreationError as exc:
        await server.close()
        raise click.ClickException(str(exc)) from exc

    await run_pipeline(client, server, PipelineSession(config=config))
