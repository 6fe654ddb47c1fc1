"""Unit tests for diagnostics logging."""

import json
import logging

import pytest

from mgit_mcp.logging_config import (
    StructuredFormatter,
    clear_request_id,
    get_request_id,
    log_push_operation,
    set_request_id,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_request_id()


def make_record(message, **extra):
    record = logging.LogRecord("mgit_mcp.test", logging.INFO, __file__, 1, message, None, None)
    record.__dict__.update(extra)
    return record


def test_structured_formatter_includes_extra_fields():
    entry = json.loads(StructuredFormatter().format(make_record("hello", repository="demo")))

    assert entry["message"] == "hello"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "mgit_mcp.test"
    assert entry["repository"] == "demo"
    assert "request_id" not in entry


def test_structured_formatter_includes_request_id():
    set_request_id(42)

    entry = json.loads(StructuredFormatter().format(make_record("hello")))

    assert entry["request_id"] == "42"


def test_request_id_lifecycle():
    set_request_id("abc")
    assert get_request_id() == "abc"

    clear_request_id()
    assert get_request_id() is None

    set_request_id(None)
    assert get_request_id() is None


def test_setup_logging_writes_log_file(tmp_path):
    log_file = tmp_path / "nested" / "supervisor.log"

    setup_logging(log_level="DEBUG", use_json=False, log_file=str(log_file))
    logging.getLogger("mgit_mcp.test").info("supervisor started")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "supervisor started" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(AttributeError):
        setup_logging(log_level="LOUD")


def test_log_push_operation_levels(caplog):
    with caplog.at_level(logging.INFO, logger="mgit_mcp.push"):
        log_push_operation("demo", True, 0.12345, details={"exit_code": 0})
        log_push_operation("demo", False, 1.0, error="Command exited with code 1")

    ok, failed = caplog.records
    assert ok.levelno == logging.INFO
    assert ok.duration_seconds == 0.123
    assert ok.exit_code == 0
    assert failed.levelno == logging.ERROR
    assert failed.error == "Command exited with code 1"
