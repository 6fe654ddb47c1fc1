"""Operation log: in-memory ring of RPC calls mirrored to a text log."""

import json
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

from mgit_mcp.logging_config import get_logger
from mgit_mcp.models import OperationLogEntry

logger = get_logger(__name__)

MAX_PAGE_SIZE = 1000


def _serialize(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class OperationLog:
    """Bounded record of every RPC call, newest first.

    Each entry is also appended as one line to the text log. Mirroring
    failures are reported to diagnostics and never reach the caller.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, capacity: int = 1000):
        """Initialize the OperationLog.

        Args:
            path: Append-only text log, or None to keep entries in memory only
            capacity: Maximum number of entries kept in memory
        """
        self.path = Path(path) if path else None
        self.capacity = capacity
        self._entries: Deque[OperationLogEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        method: str,
        params: Any,
        result: Any = None,
        error: Optional[Any] = None
    ) -> OperationLogEntry:
        """Record one call at the head of the ring, evicting the oldest on overflow.

        Args:
            method: RPC method (or event) name
            params: Request parameters, serialized to JSON
            result: Response result, serialized to JSON when not None
            error: Error description, stored as text when not None

        Returns:
            The recorded entry
        """
        entry = OperationLogEntry(
            method=str(method),
            params=_serialize(params if params is not None else {}),
            result=_serialize(result) if result is not None else None,
            error=str(error) if error is not None else None,
        )
        self._entries.appendleft(entry)
        self._mirror(entry)
        return entry

    def entries(self) -> List[OperationLogEntry]:
        return list(self._entries)

    def page(self, limit: Any = 50, offset: Any = 0) -> Dict[str, Any]:
        """Return a slice of the log, newest first.

        Raises:
            ValueError: If limit is not in 1..1000 or offset is negative
        """
        if not _is_number(limit) or limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit parameter must be between 1-{MAX_PAGE_SIZE}")

        if not _is_number(offset) or offset < 0:
            raise ValueError("offset parameter must be greater than or equal to 0")

        start = int(offset)
        stop = start + int(limit)
        logs = [entry.to_dict() for entry in list(self._entries)[start:stop]]

        return {
            "logs": logs,
            "total": len(self._entries),
            "limit": limit,
            "offset": offset,
            "hasMore": stop < len(self._entries),
        }

    def _mirror(self, entry: OperationLogEntry) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(entry.format_line())
        except OSError as e:
            logger.error(
                "Failed to write log file",
                extra={"path": str(self.path), "error": str(e)}
            )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
