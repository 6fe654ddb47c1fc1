"""Push ledger: bounded, disk-backed record of past push attempts."""

import json
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional, Union

from mgit_mcp.logging_config import get_logger
from mgit_mcp.models import PushHistoryEntry

logger = get_logger(__name__)


class PushLedger:
    """Manages the push history document.

    Entries are kept most-recent-first and never exceed ``capacity``. The
    whole ring is rewritten to the JSON document after every mutation, so a
    restarted server sees exactly what was persisted.
    """

    def __init__(self, path: Union[str, Path], capacity: int = 100):
        """Initialize the PushLedger.

        Args:
            path: Location of the push history JSON document
            capacity: Maximum number of entries kept
        """
        self.path = Path(path)
        self.capacity = capacity
        self._entries: Deque[PushHistoryEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> None:
        """Replace the in-memory ring with the persisted document.

        A missing file leaves the ledger empty. An unreadable or corrupt file
        is reported and also leaves the ledger empty.
        """
        if not self.path.exists():
            logger.info("No push history file found", extra={"path": str(self.path)})
            self._entries = deque(maxlen=self.capacity)
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError("push history document must be a JSON array")
            entries = [PushHistoryEntry.from_dict(item) for item in raw[:self.capacity]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(
                "Failed to load push history",
                extra={"path": str(self.path), "error": str(e)}
            )
            self._entries = deque(maxlen=self.capacity)
            return

        self._entries = deque(entries, maxlen=self.capacity)
        logger.info(
            "Loaded push history",
            extra={"path": str(self.path), "records": len(self._entries)}
        )

    def record(
        self,
        repo_name: str,
        message: str,
        success: bool,
        error: Optional[str] = None,
        exit_code: Optional[int] = None
    ) -> PushHistoryEntry:
        """Insert a new entry at the head and persist the ledger.

        Returns:
            The recorded entry
        """
        entry = PushHistoryEntry(
            repo_name=repo_name,
            message=message,
            success=success,
            error=error,
            exit_code=exit_code,
        )
        self._entries.appendleft(entry)
        self.save()
        return entry

    def recent(self, limit: int = 5) -> List[PushHistoryEntry]:
        """Return up to ``limit`` most recent entries, newest first."""
        return list(self._entries)[:limit]

    def entries(self) -> List[PushHistoryEntry]:
        return list(self._entries)

    def save(self) -> None:
        """Write the full ring to disk.

        Write failures are reported to diagnostics and never raised.
        """
        payload = [entry.to_dict() for entry in self._entries]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False),
                encoding="utf-8"
            )
        except OSError as e:
            logger.error(
                "Failed to write push history",
                extra={"path": str(self.path), "error": str(e)}
            )
