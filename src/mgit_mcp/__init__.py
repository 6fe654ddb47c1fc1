"""MGit MCP Server - gated mgit push tools over a line-delimited JSON-RPC protocol."""

__version__ = "1.0.0"

from mgit_mcp.config import ServerConfig

__all__ = ["ServerConfig"]
