"""Process supervisor for the MGit MCP Server.

The supervisor launches the stdio server as a child process that inherits the
supervisor's standard streams, relaunches it when it exits unexpectedly and
forwards termination signals with a bounded shutdown timeout.

Two variants exist:
- ``ProcessSupervisor`` (managed mode): restarts a crashed server up to
  ``max_restarts`` times; a clean exit ends supervision.
- ``CliSupervisor`` (CLI mode): a clean exit is the server asking to be
  restarted; any other exit code is propagated as the supervisor's own.
"""

import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

from mgit_mcp.config import ServerConfig
from mgit_mcp.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

POLL_INTERVAL = 0.1
RESTART_GRACE_SECONDS = 3.0
CLI_EXIT_DELAY = 1.0


def normalize_exit_code(code: int) -> int:
    """Map a Popen return code onto a process exit status.

    A child killed by signal N reports ``-N``; shells report that as ``128 + N``.
    """
    if code < 0:
        return 128 - code
    return code


class ProcessSupervisor:
    """Keeps exactly one server process alive (managed mode).

    Attributes:
        config: Server configuration (restart bound, delays, log locations)
        command: Command line used to launch the server
        child: Currently running server process, if any
        restart_count: Number of restarts performed after failures
        launch_count: Number of launch attempts
    """

    mode = "managed"
    log_file_name = "mcp-mgit-managed.log"

    def __init__(self, config: ServerConfig, command: Optional[List[str]] = None):
        """Initialize the supervisor.

        Args:
            config: Server configuration
            command: Server command line (default: ``python -m mgit_mcp``)
        """
        self.config = config
        self.command = command or [sys.executable, "-m", "mgit_mcp"]
        self.child: Optional[subprocess.Popen] = None
        self.restart_count = 0
        self.launch_count = 0
        self._shutdown_deadline: Optional[float] = None
        self._restart_deadline: Optional[float] = None
        self._restart_requested = False

    @property
    def shutting_down(self) -> bool:
        return self._shutdown_deadline is not None

    def child_env(self) -> Dict[str, str]:
        """Environment of the server process: ours plus resolved settings."""
        env = dict(os.environ)
        env.update({
            "MGIT_CMD": self.config.mgit_cmd,
            "REPO_NAME": self.config.repo_name,
            "PROJECT_NAME": self.config.project_name or "",
            "MCP_LOG_DIR": str(self.config.log_dir),
            "MCP_LOG_FILE": self.config.log_file,
        })
        return env

    def start_child(self) -> subprocess.Popen:
        """Launch the server process with inherited standard streams.

        Raises:
            OSError: If the process cannot be started
        """
        env = self.child_env()
        logger.info(
            "Starting MGit MCP server",
            extra={
                "command": " ".join(self.command),
                "mgit_cmd": env["MGIT_CMD"],
                "repository": env["REPO_NAME"],
                "project": env["PROJECT_NAME"] or "(not set)",
                "log_dir": env["MCP_LOG_DIR"],
                "log_file": env["MCP_LOG_FILE"],
            }
        )
        self.launch_count += 1
        child = subprocess.Popen(self.command, env=env)
        logger.info(
            "MGit MCP server process started with PID: %d (restart count: %d)",
            child.pid, self.restart_count
        )
        return child

    def supervise(self) -> int:
        """Run the server until supervision ends.

        Returns:
            Exit code for the supervisor process
        """
        while True:
            try:
                self.child = self.start_child()
            except OSError as e:
                logger.error("Server process error", extra={"error": str(e)})
                self.child = None
                outcome = self.on_launch_error(e)
                if outcome is not None:
                    return outcome
                continue

            code = self._wait_for_child()

            if self.shutting_down:
                # code is None when the child had to be killed
                return 0 if code is not None else 1

            if self._restart_requested:
                self._restart_requested = False
                self._restart_deadline = None
                logger.info("Restarting MGit MCP server on request")
                continue

            outcome = self.on_child_exit(code)
            if outcome is not None:
                return outcome

    def on_child_exit(self, code: int) -> Optional[int]:
        """Decide what happens after the server exited.

        Returns:
            None to restart the server, otherwise the supervisor's exit code
        """
        if code != 0 and self.restart_count < self.config.max_restarts:
            self.restart_count += 1
            logger.info(
                "Server crashed, restarting... (%d/%d)",
                self.restart_count, self.config.max_restarts
            )
            time.sleep(self.config.restart_delay)
            return None

        if code != 0:
            logger.error("Server crashed %d times, giving up", self.restart_count + 1)
            return 1

        logger.info("Server exited normally")
        return 0

    def on_launch_error(self, error: OSError) -> Optional[int]:
        """Decide what happens when the server could not be started."""
        return self.on_child_exit(1)

    def _wait_for_child(self) -> Optional[int]:
        """Wait for the child, enforcing shutdown and restart deadlines.

        Returns:
            The child's return code, or None if it was killed after the
            shutdown timeout expired
        """
        while True:
            try:
                code = self.child.wait(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                now = time.monotonic()
                if self._shutdown_deadline is not None and now >= self._shutdown_deadline:
                    logger.warning("Server shutdown timeout, forcing exit...")
                    self._kill_child()
                    return None
                if self._restart_deadline is not None and now >= self._restart_deadline:
                    logger.warning("Server not responding to SIGTERM, forcing kill...")
                    self._restart_deadline = None
                    self._kill_child()
                continue

            logger.info("MGit MCP server exited with code: %s", code)
            return code

    def _kill_child(self) -> None:
        try:
            self.child.kill()
            self.child.wait()
        except OSError as e:
            logger.error("Failed to force kill server", extra={"error": str(e)})

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_shutdown_signal)
        signal.signal(signal.SIGTERM, self._handle_shutdown_signal)
        if hasattr(signal, "SIGBREAK"):
            signal.signal(signal.SIGBREAK, self._handle_shutdown_signal)

    def _handle_shutdown_signal(self, signum, frame) -> None:
        self.request_shutdown(signum)

    def request_shutdown(self, signum: int) -> None:
        """Forward a termination signal and arm the shutdown timeout.

        Raises:
            SystemExit: If there is no server to wait for, or forwarding failed
        """
        name = signal.Signals(signum).name
        logger.info("Received %s, shutting down server...", name)

        if self.shutting_down:
            return

        if name == "SIGBREAK":
            signum = signal.SIGTERM

        if self.child is None or self.child.poll() is not None:
            logger.warning("No server process to shutdown")
            raise SystemExit(0)

        self._shutdown_deadline = time.monotonic() + self.config.shutdown_timeout
        try:
            self.child.send_signal(signum)
        except OSError as e:
            logger.error("Failed to send %s signal to server", name, extra={"error": str(e)})
            raise SystemExit(1)
        logger.info("Sent %s signal to server process %d", name, self.child.pid)

    def terminate_child(self) -> None:
        """Best-effort SIGTERM to the running server."""
        if self.child is None or self.child.poll() is not None:
            return
        try:
            self.child.terminate()
        except OSError as e:
            logger.error("Failed to terminate server", extra={"error": str(e)})

    def run(self) -> int:
        """Install signal handlers and supervise the server.

        An uncaught exception inside the supervisor terminates the server and
        ends supervision with a nonzero code.
        """
        self.install_signal_handlers()
        logger.info("Starting MGit MCP server supervisor (%s mode)", self.mode)
        try:
            return self.supervise()
        except Exception as e:
            logger.exception("Uncaught exception in supervisor", extra={"error": str(e)})
            self.terminate_child()
            return 1


class CliSupervisor(ProcessSupervisor):
    """CLI mode: exit code 0 means "restart me", anything else is final."""

    mode = "cli"
    log_file_name = "mcp-mgit-cli.log"

    def __init__(self, config: ServerConfig, command: Optional[List[str]] = None):
        super().__init__(config, command)
        self.exit_delay = CLI_EXIT_DELAY

    def on_child_exit(self, code: int) -> Optional[int]:
        if code == 0:
            logger.info("Server requested restart, restarting...")
            time.sleep(self.config.restart_delay)
            return None

        time.sleep(self.exit_delay)
        logger.info("CLI process exiting after server shutdown")
        return normalize_exit_code(code)

    def on_launch_error(self, error: OSError) -> Optional[int]:
        logger.error("Failed to start MGit MCP server", extra={"error": str(error)})
        return 1

    def install_signal_handlers(self) -> None:
        super().install_signal_handlers()
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, self._handle_restart_signal)

    def _handle_restart_signal(self, signum, frame) -> None:
        self.request_restart()

    def request_restart(self) -> None:
        """Stop the running server so the supervision loop relaunches it."""
        logger.info("Received restart signal, restarting MCP server...")
        if self.shutting_down or self.child is None or self.child.poll() is not None:
            return
        self._restart_requested = True
        self._restart_deadline = time.monotonic() + RESTART_GRACE_SECONDS
        self.terminate_child()


def _run(supervisor_cls) -> None:
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        setup_logging(use_json=False, stream="stderr")
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    log_file = Path(config.log_dir) / supervisor_cls.log_file_name
    try:
        setup_logging(log_level=config.log_level, use_json=False, log_file=str(log_file), stream="stderr")
    except OSError as e:
        setup_logging(log_level=config.log_level, use_json=False, stream="stderr")
        logger.error("Failed to open log file", extra={"path": str(log_file), "error": str(e)})

    exit_code = supervisor_cls(config).run()
    logger.info("Supervisor process exiting with code: %d", exit_code)
    sys.exit(exit_code)


def main_managed():
    """Entry point for managed mode (bounded restarts on crash)."""
    _run(ProcessSupervisor)


def main_cli():
    """Entry point for CLI mode (restart on request, propagate failures)."""
    _run(CliSupervisor)
