"""Exception types raised by the MGit MCP Server."""

from typing import Optional

from mcp.types import INTERNAL_ERROR, INVALID_REQUEST, METHOD_NOT_FOUND

from mgit_mcp.models import PushResult


SERVER_NOT_INITIALIZED = -32002


class RPCError(Exception):
    """Error that maps onto a JSON-RPC error object."""

    code = INTERNAL_ERROR


class InvalidRequestError(RPCError):
    """Envelope is not a valid request (e.g. unsupported ``jsonrpc`` version)."""

    code = INVALID_REQUEST


class MethodNotFoundError(RPCError):
    code = METHOD_NOT_FOUND

    def __init__(self, method: Optional[str]):
        super().__init__(f"Unknown method: {method}")
        self.method = method


class ServerNotInitializedError(RPCError):
    code = SERVER_NOT_INITIALIZED


class ToolNotFoundError(RPCError):
    """Unknown tool name in ``tools/call``.

    Reported with the generic internal error code so every tool failure shares
    one error shape.
    """

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class PushError(Exception):
    """The mgit push command ran but exited with a nonzero status.

    Attributes:
        result: Captured output and exit status of the failed command
    """

    def __init__(self, message: str, result: PushResult):
        super().__init__(message)
        self.result = result


class PushLaunchError(PushError):
    """The mgit command could not be started at all (e.g. not found)."""
