"""Data models for the MGit MCP Server."""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def now_millis() -> int:
    """Creation timestamp in milliseconds, used as entry identifier."""
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class PushResult:
    """Outcome of one invocation of the external mgit push command.

    Attributes:
        success: Whether the command exited with status 0
        stdout: Captured standard output
        stderr: Captured standard error
        exit_code: Process exit status (None if the command never started)
        error: Error description when the command failed
    """
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class PushHistoryEntry:
    """One recorded push attempt.

    Attributes:
        id: Creation timestamp in milliseconds
        timestamp: Creation time as ISO-8601 string
        repo_name: Repository identifier the push targeted
        message: Commit message that was pushed
        success: Whether the push succeeded
        error: Error text if the push failed
        exit_code: Exit status of the mgit command, if it ran
    """
    repo_name: str
    message: str
    success: bool
    error: Optional[str] = None
    exit_code: Optional[int] = None
    id: int = field(default_factory=now_millis)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "repo_name": self.repo_name,
            "message": self.message,
            "success": self.success,
            "error": self.error,
            "exit_code": self.exit_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PushHistoryEntry":
        """Rebuild an entry from its persisted form.

        Raises:
            KeyError: If a required field is missing
        """
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            repo_name=data.get("repo_name", ""),
            message=data.get("message", ""),
            success=bool(data.get("success", False)),
            error=data.get("error"),
            exit_code=data.get("exit_code"),
        )


@dataclass
class OperationLogEntry:
    """One RPC call and its outcome.

    ``params``, ``result`` and ``error`` are stored already serialized.
    """
    method: str
    params: str
    result: Optional[str] = None
    error: Optional[str] = None
    id: int = field(default_factory=now_millis)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def format_line(self) -> str:
        """Render the entry as one line of the text log."""
        return (
            f"{self.created_at} | {self.method} | {self.params} | "
            f"{self.error or 'SUCCESS'} | RESPONSE: {self.result or 'null'}\n"
        )
