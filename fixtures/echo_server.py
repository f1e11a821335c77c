"""Minimal MCP fixture server for integration tests.

Speaks MCP over stdio using the SDK's FastMCP server.

Usage:
    python fixtures/echo_server.py
"""

from mcp.server.fastmcp import FastMCP

mcp = FastMCP(
    name="echo-server",
    instructions="A test fixture that echoes and adds.",
)


@mcp.tool()
def safe_echo(message: str) -> str:
    """Echo a message back.

    Args:
        message: The message to echo.
    """
    return message


@mcp.tool()
def add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


if __name__ == "__main__":
    mcp.run()
