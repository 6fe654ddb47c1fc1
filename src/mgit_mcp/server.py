"""Main MCP server implementation.

The server speaks newline-delimited JSON-RPC 2.0 over stdin/stdout. Every
request is routed through an explicit method table; tools are looked up in an
explicit tool table, so only the names listed there are reachable.
"""

import json
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Dict, List, Optional

from mcp.types import INTERNAL_ERROR, INVALID_REQUEST, TextContent, Tool

from mgit_mcp import __version__
from mgit_mcp.config import ServerConfig
from mgit_mcp.errors import (
    InvalidRequestError,
    MethodNotFoundError,
    PushError,
    RPCError,
    ToolNotFoundError,
)
from mgit_mcp.logging_config import (
    clear_request_id,
    get_logger,
    log_push_operation,
    set_request_id,
)
from mgit_mcp.operation_log import OperationLog
from mgit_mcp.push_executor import PushExecutor
from mgit_mcp.push_gate import PushGate
from mgit_mcp.push_ledger import PushLedger

logger = get_logger(__name__)

SERVER_NAME = "mgit-mcp-server"
JSONRPC_VERSION = "2.0"
DEFAULT_PROTOCOL_VERSION = "2025-06-18"
SHUTDOWN_GRACE_SECONDS = 0.1
HISTORY_PREVIEW_LIMIT = 5
PUSH_HISTORY_CHECK_REQUIRED = "PUSH_HISTORY_CHECK_REQUIRED"

# Capability categories mirrored back when the client advertises them.
OPTIONAL_CAPABILITIES = ("prompts", "resources", "logging", "roots")

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Chinese",
    "zh-CN": "Chinese",
    "zh-TW": "Traditional Chinese",
}

EXAMPLE_MESSAGES = {
    "en": "Update project files",
    "zh": "更新项目文件",
    "zh-CN": "更新项目文件",
    "zh-TW": "更新專案檔案",
}

Handler = Callable[[Dict[str, Any]], Any]


def text_block(text: str) -> Dict[str, Any]:
    """Build a single text content block."""
    return TextContent(type="text", text=text).model_dump(by_alias=True, exclude_none=True)


def is_notification(method: Any) -> bool:
    return isinstance(method, str) and method.startswith("notifications/")


def is_advertised(value: Any) -> bool:
    """Whether a client capability entry is switched on.

    Objects and arrays count even when empty; other values count when truthy.
    """
    return isinstance(value, (dict, list)) or bool(value)


def push_denied_segments(repo_name: str, history_tool: str, push_tool: str) -> List[str]:
    """Ordered guidance returned when a push is attempted before reading history."""
    return [
        "PUSH BLOCKED: the push history has not been checked in this session.",
        f'Before every push you must call "{history_tool}" to review the most recent '
        f'pushes for repository "{repo_name}".',
        "Compare those records with the change you are about to push so the same "
        "push is not submitted twice.",
        f'After reviewing the history, call "{push_tool}" again with your commit message.',
    ]


@dataclass
class ServerContext:
    """Everything one server session owns.

    The server is single-threaded and handles one request at a time, so the
    collaborators here are never accessed concurrently.

    Attributes:
        config: Process-wide configuration
        operation_log: Record of every RPC call
        ledger: Persisted push history
        executor: Runs the external mgit command
        gate: Push gate of this session
        initialized: Whether ``initialize`` has been handled
        client_capabilities: Capabilities negotiated by the first ``initialize``
        protocol_version: Protocol version negotiated by the first ``initialize``
    """
    config: ServerConfig
    operation_log: OperationLog
    ledger: PushLedger
    executor: PushExecutor
    gate: PushGate = field(default_factory=PushGate)
    initialized: bool = False
    client_capabilities: Dict[str, Any] = field(default_factory=dict)
    protocol_version: Optional[str] = None

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ServerContext":
        """Build a context from configuration and load the push history."""
        ledger = PushLedger(config.push_history_path)
        ledger.load()
        return cls(
            config=config,
            operation_log=OperationLog(config.log_path),
            ledger=ledger,
            executor=PushExecutor(config.mgit_cmd, config.repo_name),
        )


class MGitMCPServer:
    """JSON-RPC request dispatcher for the mgit push tools."""

    def __init__(self, context: ServerContext):
        self.context = context
        self.exit_code: Optional[int] = None
        self.exit_delay = 0.0

        self._methods: Dict[str, Handler] = {
            "initialize": self._initialize,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "ping": self._ping,
            "shutdown": self._shutdown,
            "notifications/initialized": self._notification_initialized,
            "notifications/exit": self._notification_exit,
            "prompts/list": lambda params: {"prompts": []},
            "resources/list": lambda params: {"resources": []},
            "logging/list": lambda params: {"logs": []},
            "roots/list": lambda params: {"roots": []},
            "prompts/call": self._unsupported_prompts_call,
            "resources/read": lambda params: self._unsupported_read("resources"),
            "logging/read": lambda params: self._unsupported_read("logging"),
            "roots/read": lambda params: self._unsupported_read("roots"),
        }

        self._tools: Dict[str, Handler] = {
            "mgit_push": self.mgit_push,
            "get_push_history": self.get_push_history,
            "get_operation_logs": self.get_operation_logs,
        }

    @property
    def config(self) -> ServerConfig:
        return self.context.config

    def server_info(self) -> Dict[str, str]:
        return {"name": SERVER_NAME, "version": __version__}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def serve(self, input_stream: IO[str], output_stream: IO[str]) -> int:
        """Handle request lines until EOF or an exit request.

        Args:
            input_stream: Stream of newline-delimited request envelopes
            output_stream: Stream receiving newline-delimited responses

        Returns:
            Process exit code
        """
        for line in input_stream:
            if not line.strip():
                continue

            response = self.handle_line(line)
            if response is not None:
                output_stream.write(json.dumps(response) + "\n")
                output_stream.flush()

            if self.exit_code is not None:
                if self.exit_delay:
                    time.sleep(self.exit_delay)
                return self.exit_code

        logger.info("Input stream closed, stopping server")
        return 0

    def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Parse one request line and handle it.

        Malformed lines produce an error envelope with a null id; they never
        stop the server.
        """
        try:
            request = json.loads(line)
        except (ValueError, RecursionError) as e:
            logger.error("Error processing individual request", extra={"error": str(e)})
            return self._error_response(None, INTERNAL_ERROR, f"Internal error: {e}")

        if not isinstance(request, dict):
            return self._error_response(
                None, INVALID_REQUEST, "Invalid request: envelope must be a JSON object"
            )

        return self.handle_request(request)

    def handle_request(self, request: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Handle one request envelope.

        Returns:
            Response envelope, or None for notifications
        """
        request_id = request.get("id")
        method = request.get("method")
        params = request.get("params")
        if not isinstance(params, dict):
            params = {}

        set_request_id(request_id)
        try:
            if request.get("jsonrpc") != JSONRPC_VERSION:
                error = InvalidRequestError("Unsupported JSON-RPC version")
                self.context.operation_log.record(
                    method, {"jsonrpc": request.get("jsonrpc")}, error=str(error)
                )
                logger.warning("Rejected request", extra={"error": str(error)})
                return self._error_response(request_id, error.code, str(error))

            try:
                result = self.dispatch(method, params)
            except RPCError as e:
                logger.warning("Request failed", extra={"method": method, "error": str(e)})
                response = self._error_response(request_id, e.code, str(e))
            except Exception as e:
                logger.error("Request failed", extra={"method": method, "error": str(e)})
                response = self._error_response(request_id, INTERNAL_ERROR, str(e))
            else:
                response = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}

            if is_notification(method):
                return None
            return response
        finally:
            clear_request_id()

    def dispatch(self, method: Any, params: Dict[str, Any]) -> Any:
        """Route a request to its handler and record it in the operation log.

        Raises:
            MethodNotFoundError: If the method is not in the method table
        """
        result = None
        error = None
        try:
            handler = self._methods.get(method) if isinstance(method, str) else None
            if handler is None:
                if is_notification(method):
                    logger.info("Ignoring unknown notification", extra={"method": method})
                    return None
                raise MethodNotFoundError(method)
            result = handler(params)
            return result
        except Exception as e:
            error = str(e)
            raise
        finally:
            self.context.operation_log.record(method, params, result, error)

    def _error_response(self, request_id: Any, code: int, message: str) -> Dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "error": {"code": code, "message": message},
        }

    def request_exit(self, code: int, delay: float = 0.0) -> None:
        """Stop serving after the current response has been written."""
        self.exit_code = code
        self.exit_delay = delay

    # ------------------------------------------------------------------
    # Protocol methods
    # ------------------------------------------------------------------

    def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        client_capabilities = params.get("capabilities")
        if not isinstance(client_capabilities, dict):
            client_capabilities = {}
        protocol_version = params.get("protocolVersion") or DEFAULT_PROTOCOL_VERSION

        if not self.context.initialized:
            self.context.initialized = True
            self.context.client_capabilities = dict(client_capabilities)
            self.context.protocol_version = protocol_version
            logger.info(
                "Session initialized",
                extra={
                    "protocol_version": protocol_version,
                    "client_capabilities": client_capabilities,
                    "client_info": params.get("clientInfo") or {},
                }
            )

        capabilities: Dict[str, Any] = {"tools": {"listChanged": False}}
        for category in OPTIONAL_CAPABILITIES:
            if is_advertised(client_capabilities.get(category)):
                capabilities[category] = {"listChanged": False}

        return {
            "protocolVersion": protocol_version,
            "capabilities": capabilities,
            "serverInfo": self.server_info(),
        }

    def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        environment = self.config.environment()
        environment["serverInfo"] = self.server_info()
        return {
            "tools": [tool.model_dump(by_alias=True, exclude_none=True) for tool in self.tool_descriptors()],
            "environment": environment,
        }

    def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        if not name or not isinstance(name, str):
            raise ValueError("Missing tool name")

        handler = self._tools.get(self.resolve_tool_name(name))
        if handler is None:
            raise ToolNotFoundError(name)

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ValueError("Tool arguments must be an object")

        result = handler(arguments)

        # Results that already carry content blocks are passed through as-is.
        if isinstance(result, dict) and isinstance(result.get("content"), list):
            return result

        return {"content": [text_block(json.dumps(result, indent=2, ensure_ascii=False))]}

    def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Received ping")
        return {"pong": True}

    def _shutdown(self, params: Dict[str, Any]) -> None:
        logger.info("Shutdown requested")
        self.request_exit(0, SHUTDOWN_GRACE_SECONDS)
        return None

    def _notification_initialized(self, params: Dict[str, Any]) -> None:
        logger.info("Client reported initialization complete")
        return None

    def _notification_exit(self, params: Dict[str, Any]) -> None:
        logger.info("Exit notification received")
        self.request_exit(0)
        return None

    def _unsupported_prompts_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "messages": [
                {"role": "assistant", "content": [text_block("Unsupported prompts call")]}
            ]
        }

    def _unsupported_read(self, category: str) -> Dict[str, Any]:
        return {
            "contents": [
                {"uri": "error://unsupported", "text": f"Unsupported {category} read"}
            ]
        }

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def tool_name(self, base_name: str) -> str:
        """Prefix a tool name with the repository identifier, if configured."""
        if self.config.repo_name:
            return f"{self.config.repo_name}_{base_name}"
        return base_name

    def resolve_tool_name(self, name: str) -> str:
        """Strip the repository prefix from a tool name, if present."""
        prefix = f"{self.config.repo_name}_"
        if self.config.repo_name and name.startswith(prefix):
            return name[len(prefix):]
        return name

    def tool_description(self, description: str) -> str:
        if self.config.project_name:
            return f"[{self.config.project_name}] {description}"
        return description

    def tool_descriptors(self) -> List[Tool]:
        """Describe every tool for ``tools/list``."""
        language = self.config.language
        language_name = LANGUAGE_NAMES.get(language, language)
        example = EXAMPLE_MESSAGES.get(language, EXAMPLE_MESSAGES["en"])
        repo_name = self.config.repo_name
        history_tool = self.tool_name("get_push_history")

        push_description = (
            f'Execute {self.config.mgit_cmd} push command for repository "{repo_name}" '
            "with a commit message.\n\n"
            "IMPORTANT:\n"
            "- You must use this tool to push to repositories\n"
            f"- You must call {history_tool} before every push; a push without a "
            "preceding history check is rejected\n"
            "- The repository name is configured via REPO_NAME environment variable\n"
            f"- Language setting: {language} (default: en)\n\n"
            "USAGE: You only need to pass the commit message parameter. Example:\n"
            f'{{message: "{example}"}}\n\n'
            f"Please provide the commit message in {language_name} language.\n\n"
            "NOTE: If the push result contains a branch merge URL (such as a pull "
            "request URL), please output it to the user. If you can open a browser, "
            "you may also automatically open the URL."
        )

        return [
            Tool(
                name=self.tool_name("mgit_push"),
                description=self.tool_description(push_description),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "message": {
                            "type": "string",
                            "description": (
                                f"Commit message in {language_name} language. "
                                f'Example: {{message: "{example}"}}'
                            ),
                        }
                    },
                    "required": ["message"],
                },
            ),
            Tool(
                name=history_tool,
                description=self.tool_description(
                    f'Get the {HISTORY_PREVIEW_LIMIT} most recent push records for repository '
                    f'"{repo_name}". Must be called before every push.'
                ),
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name=self.tool_name("get_operation_logs"),
                description=self.tool_description("Get operation logs"),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "limit": {"type": "number", "description": "Limit count, default 50"},
                        "offset": {"type": "number", "description": "Offset, default 0"},
                    },
                },
            ),
        ]

    def get_push_history(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Return recent push records and open the push gate."""
        ledger = self.context.ledger
        self.context.gate.record_history_read()

        records = [entry.to_dict() for entry in ledger.recent(HISTORY_PREVIEW_LIMIT)]
        total = len(ledger)

        if total == 0:
            message = (
                "No push history found. This appears to be the first push for "
                "this repository."
            )
        else:
            message = (
                f"Found {total} push record(s); showing the {len(records)} most recent. "
                "Make sure the change you are about to push has not already been pushed."
            )

        return {"total": total, "records": records, "message": message}

    def mgit_push(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Run the mgit push command if the push history was checked first.

        Raises:
            ValueError: If the message argument is missing
            PushError: If the command fails or cannot be started
        """
        repo_name = self.config.repo_name

        if not self.context.gate.attempt_push():
            logger.warning("Push rejected: push history not checked", extra={"repository": repo_name})
            segments = push_denied_segments(
                repo_name,
                self.tool_name("get_push_history"),
                self.tool_name("mgit_push"),
            )
            return {
                "content": [text_block(segment) for segment in segments],
                "isError": True,
                "errorCode": PUSH_HISTORY_CHECK_REQUIRED,
            }

        message = arguments.get("message")
        if not message or not isinstance(message, str):
            raise ValueError("Missing message parameter")

        start_time = time.time()
        try:
            result = self.context.executor.push(message)
        except PushError as e:
            error = e.result.error or str(e)
            self.context.ledger.record(
                repo_name, message, success=False, error=error, exit_code=e.result.exit_code
            )
            log_push_operation(
                repository=repo_name,
                success=False,
                duration=time.time() - start_time,
                details={"exit_code": e.result.exit_code},
                error=error,
            )
            raise PushError(f"MGit push failed: {error}", e.result) from e

        self.context.ledger.record(repo_name, message, success=True, exit_code=result.exit_code)
        log_push_operation(
            repository=repo_name,
            success=True,
            duration=time.time() - start_time,
            details={"exit_code": result.exit_code},
        )

        return {
            "success": True,
            "repo_name": repo_name,
            "message": message,
            "output": result.stdout,
            "error_output": result.stderr,
            "exit_code": result.exit_code,
        }

    def get_operation_logs(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.context.operation_log.page(
            arguments.get("limit", 50),
            arguments.get("offset", 0),
        )

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def record_event(self, name: str, params: Dict[str, Any], result: Any = None, error: Optional[str] = None) -> None:
        """Record a process-level event in the operation log."""
        self.context.operation_log.record(name, params, result, error)

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_signal)
        signal.signal(signal.SIGINT, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        logger.info("Received %s signal, shutting down server", name)
        self.record_event(name, {"signal": name}, {"status": "shutting_down"})
        raise SystemExit(0)

    def start(self) -> None:
        """Announce the configuration and record the server start."""
        config = self.config
        logger.info(
            "MGit MCP server started",
            extra={
                "mgit_cmd": config.mgit_cmd,
                "repository": config.repo_name,
                "project": config.project_name or "(not set)",
                "language": config.language,
                "log_dir": str(config.log_dir),
                "log_file": str(config.log_path),
                "push_history_file": str(config.push_history_path),
            }
        )
        self.record_event(
            "server_start",
            {
                "name": SERVER_NAME,
                "version": __version__,
                "logDir": str(config.log_dir),
                "logFile": str(config.log_path),
            },
            {"status": "started"},
        )


def create_server(config: ServerConfig) -> MGitMCPServer:
    return MGitMCPServer(ServerContext.from_config(config))


def run_stdio_server(server: MGitMCPServer) -> int:
    """Run the server over stdin/stdout.

    Returns:
        Process exit code
    """
    server.install_signal_handlers()
    server.start()
    return server.serve(sys.stdin, sys.stdout)
