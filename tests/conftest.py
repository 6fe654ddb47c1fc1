"""Shared fixtures for the MGit MCP Server tests."""

import json
import sys
from unittest.mock import Mock

import pytest

from mgit_mcp.config import ServerConfig
from mgit_mcp.models import PushResult
from mgit_mcp.operation_log import OperationLog
from mgit_mcp.push_executor import PushExecutor
from mgit_mcp.push_ledger import PushLedger
from mgit_mcp.server import MGitMCPServer, ServerContext


@pytest.fixture
def config(tmp_path):
    """Create a configuration rooted in a temporary log directory."""
    return ServerConfig(
        repo_name="demo",
        mgit_cmd="mgit",
        log_dir=str(tmp_path / "logs"),
        restart_delay=0,
    )


@pytest.fixture
def mock_executor():
    """Create a PushExecutor double that succeeds by default."""
    executor = Mock(spec=PushExecutor)
    executor.push.return_value = PushResult(
        success=True, stdout="pushed\n", stderr="", exit_code=0
    )
    return executor


@pytest.fixture
def context(config, mock_executor):
    """Create a server context with an empty ledger and a stubbed executor."""
    return ServerContext(
        config=config,
        operation_log=OperationLog(config.log_path),
        ledger=PushLedger(config.push_history_path),
        executor=mock_executor,
    )


@pytest.fixture
def server(context):
    return MGitMCPServer(context)


@pytest.fixture
def make_mgit(tmp_path):
    """Build an executable stand-in for the mgit program.

    The stub prints the given output, appends its arguments to
    ``mgit-calls.jsonl`` and exits with the given code.
    """
    calls_file = tmp_path / "mgit-calls.jsonl"

    def _make(exit_code=0, stdout="pushed\n", stderr=""):
        script = tmp_path / "mgit"
        script.write_text(
            f"#!{sys.executable}\n"
            "import json, sys\n"
            f"sys.stdout.write({stdout!r})\n"
            f"sys.stderr.write({stderr!r})\n"
            f"with open({str(calls_file)!r}, 'a') as fh:\n"
            "    fh.write(json.dumps(sys.argv[1:]) + '\\n')\n"
            f"sys.exit({exit_code})\n",
            encoding="utf-8",
        )
        script.chmod(0o755)
        return script

    _make.calls = lambda: (
        [json.loads(line) for line in calls_file.read_text().splitlines()]
        if calls_file.exists() else []
    )
    return _make


def call_tool(server, name, arguments=None, request_id=1):
    """Send a tools/call request and return the response envelope."""
    request = {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name},
    }
    if arguments is not None:
        request["params"]["arguments"] = arguments
    return server.handle_request(request)


def tool_payload(response):
    """Decode the JSON text block of a wrapped tool result."""
    return json.loads(response["result"]["content"][0]["text"])
