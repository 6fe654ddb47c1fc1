"""Push gate: a push is only permitted after the push history was read."""

from enum import Enum
from typing import Dict, Tuple

from mgit_mcp.logging_config import get_logger

logger = get_logger(__name__)


class GateState(str, Enum):
    UNCHECKED = "unchecked"
    CHECKED = "checked"


class GateEvent(str, Enum):
    HISTORY_READ = "history_read"
    PUSH_ATTEMPT = "push_attempt"


TRANSITIONS: Dict[Tuple[GateState, GateEvent], GateState] = {
    (GateState.UNCHECKED, GateEvent.HISTORY_READ): GateState.CHECKED,
    (GateState.CHECKED, GateEvent.HISTORY_READ): GateState.CHECKED,
    # A denied push leaves the gate closed.
    (GateState.UNCHECKED, GateEvent.PUSH_ATTEMPT): GateState.UNCHECKED,
    # The gate is single-use: any push that gets through closes it again.
    (GateState.CHECKED, GateEvent.PUSH_ATTEMPT): GateState.UNCHECKED,
}


class PushGate:
    """Single-bit state machine guarding the push tool.

    One gate exists per server session. Reading the push history opens it;
    every push attempt closes it, whether or not the push succeeds.
    """

    def __init__(self):
        self.state = GateState.UNCHECKED

    @property
    def is_checked(self) -> bool:
        return self.state is GateState.CHECKED

    def record_history_read(self) -> None:
        self._fire(GateEvent.HISTORY_READ)

    def attempt_push(self) -> bool:
        """Consume the gate for a push attempt.

        Returns:
            True if the push may proceed, False if history was not read first
        """
        allowed = self.is_checked
        self._fire(GateEvent.PUSH_ATTEMPT)
        return allowed

    def _fire(self, event: GateEvent) -> None:
        previous = self.state
        self.state = TRANSITIONS[(previous, event)]
        logger.debug(
            "Push gate transition",
            extra={"event": event.value, "from_state": previous.value, "to_state": self.state.value}
        )
