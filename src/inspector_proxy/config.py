"""Runtime configuration for inspector-proxy.

Only the knobs the relay itself consumes live here. Values come from the
environment; CLI options override them via ``model_copy(update=...)``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

DEBUG_FILE_ENV = "MCP_TRANSPORT_DEBUG_FILE"
DELIVERY_ERROR_CODE_ENV = "MCP_PROXY_DELIVERY_ERROR_CODE"
NOT_FOUND_PATTERNS_ENV = "MCP_PROXY_NOT_FOUND_PATTERNS"
REFUSED_PATTERNS_ENV = "MCP_PROXY_REFUSED_PATTERNS"

# Proxy-level delivery failure; must not collide with codes targets return.
DEFAULT_DELIVERY_ERROR_CODE = -32001

DEFAULT_NOT_FOUND_PATTERNS = (
    "Error POSTing to endpoint (HTTP 404)",
    "404 Not Found",
)
DEFAULT_REFUSED_PATTERNS = (
    "ECONNREFUSED",
    "Connection refused",
    "All connection attempts failed",
)


class ProxyConfig(BaseModel):
    """Settings consumed by the transport factory and forwarding engine.

    Args:
        debug_file: Base path for per-transport debug logs. None disables
            debug logging.
        delivery_error_code: JSON-RPC error code used when the proxy cannot
            deliver a request to its destination.
        not_found_patterns: Substrings that mark a server-side error as
            "endpoint not found".
        refused_patterns: Substrings that mark a server-side error as
            "connection refused".
    """

    debug_file: Path | None = None
    delivery_error_code: int = DEFAULT_DELIVERY_ERROR_CODE
    not_found_patterns: tuple[str, ...] = Field(default=DEFAULT_NOT_FOUND_PATTERNS)
    refused_patterns: tuple[str, ...] = Field(default=DEFAULT_REFUSED_PATTERNS)

    @property
    def debug_enabled(self) -> bool:
        """True when a debug-log base path is configured."""
        return self.debug_file is not None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ProxyConfig:
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            A ProxyConfig with defaults for anything unset.

        Raises:
            pydantic.ValidationError: If a value cannot be parsed.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        debug_file = env.get(DEBUG_FILE_ENV, "").strip()
        if debug_file:
            values["debug_file"] = debug_file

        code = env.get(DELIVERY_ERROR_CODE_ENV, "").strip()
        if code:
            values["delivery_error_code"] = code

        for key, name in (
            (NOT_FOUND_PATTERNS_ENV, "not_found_patterns"),
            (REFUSED_PATTERNS_ENV, "refused_patterns"),
        ):
            raw = env.get(key, "")
            patterns = tuple(p.strip() for p in raw.split(",") if p.strip())
            if patterns:
                values[name] = patterns

        return cls.model_validate(values)
