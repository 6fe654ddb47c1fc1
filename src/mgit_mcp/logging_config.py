"""Diagnostics logging for the MGit MCP Server.

The stdio server owns stdout for protocol envelopes, so every diagnostic line
goes to stderr and, for the supervisors, to a log file next to the operation
log. Records can be rendered as plain text or as one JSON object per line;
either way the JSON-RPC id of the request being handled is attached.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# JSON-RPC id of the request currently being dispatched
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

TEXT_FORMAT = "%(asctime)s [%(process)d] %(name)s %(levelname)s: %(message)s"

# LogRecord attributes that are never treated as ``extra`` fields.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "request_id",
}


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through ``extra=`` when the record was logged."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """Render each record as a single JSON line.

    Keys: ``timestamp`` (UTC, millisecond precision), ``level``, ``logger``,
    ``pid``, ``message``, ``request_id`` when a request is in flight,
    ``exception`` when one is attached, then every ``extra`` field.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "pid": record.process,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(record_extras(record))
        return json.dumps(entry, ensure_ascii=False, default=str)


class RequestIDFilter(logging.Filter):
    """Copy the in-flight request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = request_id_var.get()
        if request_id:
            record.request_id = request_id
        return True


def setup_logging(
    log_level: str = "INFO",
    use_json: bool = True,
    log_file: Optional[str] = None,
    stream: str = "stderr"
) -> None:
    """Replace the root logger's handlers.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Render records with ``StructuredFormatter`` instead of text
        log_file: Also append records to this file (parent directories are created)
        stream: Console stream, ``"stderr"`` or ``"stdout"``

    Raises:
        AttributeError: If the level name is unknown
        OSError: If the log file cannot be opened
    """
    level = getattr(logging, log_level.upper())
    formatter = StructuredFormatter() if use_json else logging.Formatter(TEXT_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout if stream == "stdout" else sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(RequestIDFilter())
        root_logger.addHandler(handler)


def set_request_id(request_id: Any) -> None:
    """Mark ``request_id`` as the request being handled (ids may be ints)."""
    request_id_var.set(None if request_id is None else str(request_id))


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id() -> None:
    request_id_var.set(None)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


push_logger = get_logger("mgit_mcp.push")


def log_push_operation(
    repository: str,
    success: bool,
    duration: float,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None
) -> None:
    """Emit one structured record for a push attempt.

    Successful pushes log at INFO, failed ones at ERROR with the error text.
    """
    fields: Dict[str, Any] = {
        "operation": "push",
        "repository": repository,
        "success": success,
        "duration_seconds": round(duration, 3),
    }
    fields.update(details or {})

    if success:
        push_logger.info("Push completed", extra=fields)
        return

    fields["error"] = error
    push_logger.error("Push failed", extra=fields)
