"""Unit tests for the push gate state machine."""

import pytest

from mgit_mcp.push_gate import TRANSITIONS, GateEvent, GateState, PushGate


class TestPushGate:
    """Tests for PushGate transitions."""

    @pytest.fixture
    def gate(self):
        return PushGate()

    def test_starts_unchecked(self, gate):
        assert gate.state is GateState.UNCHECKED
        assert gate.is_checked is False

    def test_history_read_opens_gate(self, gate):
        gate.record_history_read()

        assert gate.state is GateState.CHECKED

    def test_history_read_is_idempotent(self, gate):
        gate.record_history_read()
        gate.record_history_read()

        assert gate.state is GateState.CHECKED

    def test_push_without_history_is_denied(self, gate):
        assert gate.attempt_push() is False
        assert gate.state is GateState.UNCHECKED

    def test_push_after_history_is_allowed_once(self, gate):
        gate.record_history_read()

        assert gate.attempt_push() is True
        assert gate.state is GateState.UNCHECKED
        assert gate.attempt_push() is False

    def test_transition_table_is_complete(self):
        for state in GateState:
            for event in GateEvent:
                assert (state, event) in TRANSITIONS
