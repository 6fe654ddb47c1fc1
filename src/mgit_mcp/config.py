"""Configuration management for the MGit MCP Server."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


DEFAULT_LOG_FILE = "mcp-mgit.log"
DEFAULT_PUSH_HISTORY_FILE = "push-history.json"


@dataclass
class ServerConfig:
    """Configuration settings for the MCP server.

    Read once at startup and treated as immutable for the lifetime of the
    process.

    Attributes:
        repo_name: Repository identifier passed to the mgit command (required)
        mgit_cmd: Name or path of the external mgit program
        project_name: Optional project label shown in tool descriptions
        language: Language hint for commit messages (en, zh, zh-CN, zh-TW, ...)
        log_dir: Directory holding the operation log and push history
        log_file: File name of the append-only operation log
        push_history_file: Push history JSON document (relative to log_dir)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        max_restarts: Restart bound used by the managed supervisor
        restart_delay: Seconds to wait before relaunching the server
        shutdown_timeout: Seconds to wait for the server after forwarding a signal
    """
    # Core settings
    repo_name: str = ""
    mgit_cmd: str = "mgit"
    project_name: str = ""
    language: str = "en"

    # Persistence settings
    log_dir: Optional[str] = None
    log_file: str = DEFAULT_LOG_FILE
    push_history_file: str = DEFAULT_PUSH_HISTORY_FILE

    # Logging settings
    log_level: str = "INFO"

    # Supervisor settings
    max_restarts: int = 10
    restart_delay: float = 2.0
    shutdown_timeout: float = 10.0

    def __post_init__(self):
        if not self.log_dir:
            self.log_dir = default_log_dir(self.repo_name)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ServerConfig":
        """Load configuration from environment variables.

        Args:
            env_file: Optional path to .env file to load

        Returns:
            ServerConfig instance populated from environment variables

        Raises:
            ValueError: If any configuration value is invalid
        """
        if env_file:
            load_dotenv(env_file)

        config = cls(
            repo_name=os.getenv("REPO_NAME", "").strip(),
            mgit_cmd=os.getenv("MGIT_CMD") or "mgit",
            project_name=os.getenv("PROJECT_NAME", ""),
            language=os.getenv("LANGUAGE") or "en",
            log_dir=os.getenv("MCP_LOG_DIR") or None,
            log_file=os.getenv("MCP_LOG_FILE") or DEFAULT_LOG_FILE,
            push_history_file=os.getenv("MCP_PUSH_HISTORY_FILE") or DEFAULT_PUSH_HISTORY_FILE,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            max_restarts=int(os.getenv("MCP_MAX_RESTARTS", "10")),
            restart_delay=float(os.getenv("MCP_RESTART_DELAY", "2")),
            shutdown_timeout=float(os.getenv("MCP_SHUTDOWN_TIMEOUT", "10")),
        )

        config.validate()

        return config

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid
        """
        if not self.repo_name or not self.repo_name.strip():
            raise ValueError(
                "REPO_NAME environment variable is required but not set. "
                'Example: export REPO_NAME="my-repo". '
                f'Use "{self.mgit_cmd} list" to view available repository names.'
            )

        valid_log_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if self.log_level not in valid_log_levels:
            raise ValueError(
                f"Invalid log_level: {self.log_level}. "
                f"Must be one of {valid_log_levels}"
            )

        if self.max_restarts < 0:
            raise ValueError(
                f"Invalid max_restarts: {self.max_restarts}. "
                "Must be at least 0"
            )

        if self.restart_delay < 0 or self.shutdown_timeout < 0:
            raise ValueError("restart_delay and shutdown_timeout must not be negative")

    @property
    def log_path(self) -> Path:
        """Full path of the append-only operation log."""
        return Path(self.log_dir) / self.log_file

    @property
    def push_history_path(self) -> Path:
        """Full path of the push history document."""
        path = Path(self.push_history_file)
        if path.is_absolute():
            return path
        return Path(self.log_dir) / path

    def environment(self) -> Dict[str, Any]:
        """Configuration echoed back to clients by ``tools/list``."""
        return {
            "MGIT_CMD": self.mgit_cmd,
            "REPO_NAME": self.repo_name or "",
            "PROJECT_NAME": self.project_name or "",
            "LANGUAGE": self.language,
        }


def default_log_dir(repo_name: str) -> str:
    """Derive the default log directory from the repository identifier."""
    if repo_name:
        return f"./.setting.{repo_name}"
    return "./.setting"
