"""Push executor for running the external mgit command."""

import subprocess
import sys
import threading
from typing import IO, List, Optional

from mgit_mcp.errors import PushError, PushLaunchError
from mgit_mcp.logging_config import get_logger
from mgit_mcp.models import PushResult

logger = get_logger(__name__)


def sanitize_message(message: str) -> str:
    """Replace double quotes so the message stays one unambiguous argument."""
    return message.replace('"', "'")


class PushExecutor:
    """Runs ``<command> push <repo_name> <message>`` as a direct subprocess.

    No shell is involved: the message is passed as a single positional
    argument. Child output is echoed to the diagnostic stream as it arrives
    and accumulated for the result.
    """

    def __init__(self, command: str, repo_name: str, echo: Optional[IO[str]] = None):
        """Initialize the PushExecutor.

        Args:
            command: Name or path of the mgit program
            repo_name: Repository identifier passed to ``push``
            echo: Stream receiving child output (default: sys.stderr)
        """
        self.command = command
        self.repo_name = repo_name
        self.echo = echo

    def build_args(self, message: str) -> List[str]:
        return [self.command, "push", self.repo_name, sanitize_message(message)]

    def push(self, message: str) -> PushResult:
        """Push the repository with the given commit message.

        Args:
            message: Non-empty commit message

        Returns:
            PushResult for a zero exit status

        Raises:
            ValueError: If the message is empty or not a string
            PushLaunchError: If the command cannot be started
            PushError: If the command exits with a nonzero status
        """
        if not message or not isinstance(message, str):
            raise ValueError("Missing message parameter")

        args = self.build_args(message)
        logger.info(
            "Executing: %s",
            " ".join(f'"{arg}"' if " " in arg else arg for arg in args)
        )

        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                shell=False,
            )
        except (OSError, ValueError) as e:
            # ValueError: arguments the OS cannot accept (e.g. an embedded NUL)
            result = PushResult(success=False, error=str(e))
            raise PushLaunchError(str(e), result) from e

        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []
        readers = [
            threading.Thread(target=self._pump, args=(process.stdout, stdout_chunks), daemon=True),
            threading.Thread(target=self._pump, args=(process.stderr, stderr_chunks), daemon=True),
        ]
        for reader in readers:
            reader.start()

        exit_code = process.wait()
        for reader in readers:
            reader.join()

        result = PushResult(
            success=exit_code == 0,
            stdout="".join(stdout_chunks),
            stderr="".join(stderr_chunks),
            exit_code=exit_code,
        )

        if exit_code != 0:
            result.error = f"Command exited with code {exit_code}"
            raise PushError(result.error, result)

        return result

    def _pump(self, pipe: IO[str], chunks: List[str]) -> None:
        """Copy one child pipe into ``chunks`` and the echo stream."""
        echo = self.echo or sys.stderr
        with pipe:
            for line in pipe:
                chunks.append(line)
                try:
                    echo.write(line)
                    echo.flush()
                except (OSError, ValueError):
                    # echo is best effort
                    pass
