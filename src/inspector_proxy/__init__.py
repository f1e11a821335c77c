"""inspector-proxy — debugging relay between an MCP inspector and a target server."""

__version__ = "0.1.0"
