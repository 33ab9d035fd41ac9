"""
Unit tests for run status transitions.
"""

import pytest

from flow_engine.core.state_machine import (
    InvalidStateTransitionError,
    RunStateMachine,
    RunStatus,
)


class TestRunStateMachine:
    """Tests for the run state machine."""

    def test_initial_state(self):
        """Test default initial state is RUNNING."""
        sm = RunStateMachine()
        assert sm.state == RunStatus.RUNNING
        assert not sm.is_terminal
        assert not sm.is_waiting

    def test_running_to_waiting_on_timer(self):
        """Test a Delay node parks the run."""
        sm = RunStateMachine()

        transition = sm.transition(RunStatus.WAITING_ON_TIMER, reason="Delay 5s")

        assert sm.state == RunStatus.WAITING_ON_TIMER
        assert sm.is_waiting
        assert transition.from_status == RunStatus.RUNNING
        assert transition.to_status == RunStatus.WAITING_ON_TIMER
        assert transition.reason == "Delay 5s"

    def test_timer_elapsed_resumes_running(self):
        """Test WAITING_ON_TIMER -> RUNNING."""
        sm = RunStateMachine(RunStatus.WAITING_ON_TIMER)

        sm.transition(RunStatus.RUNNING, triggered_by="timer")

        assert sm.state == RunStatus.RUNNING

    def test_action_failure_fails_run(self):
        """Test WAITING_ON_ACTION -> FAILED."""
        sm = RunStateMachine(RunStatus.WAITING_ON_ACTION)

        sm.transition(RunStatus.FAILED, reason="Retries exhausted")

        assert sm.state == RunStatus.FAILED
        assert sm.is_terminal

    def test_running_to_running_is_allowed(self):
        """Test advancing between nodes keeps the run RUNNING."""
        sm = RunStateMachine()

        sm.transition(RunStatus.RUNNING)

        assert sm.state == RunStatus.RUNNING

    def test_timer_wait_cannot_fail(self):
        """Test that a timer wait never fails on its own."""
        sm = RunStateMachine(RunStatus.WAITING_ON_TIMER)

        with pytest.raises(InvalidStateTransitionError):
            sm.transition(RunStatus.FAILED)

    def test_waiting_cannot_complete_directly(self):
        """Test that a waiting run must resume before completing."""
        for state in (RunStatus.WAITING_ON_TIMER, RunStatus.WAITING_ON_ACTION):
            sm = RunStateMachine(state)
            with pytest.raises(InvalidStateTransitionError):
                sm.transition(RunStatus.COMPLETED)

    @pytest.mark.parametrize(
        "state",
        [RunStatus.RUNNING, RunStatus.WAITING_ON_TIMER, RunStatus.WAITING_ON_ACTION],
    )
    def test_cancellation_from_any_active_state(self, state):
        """Test that any non-terminal run can be cancelled."""
        sm = RunStateMachine(state)

        sm.transition(RunStatus.CANCELLED, triggered_by="user")

        assert sm.state == RunStatus.CANCELLED

    @pytest.mark.parametrize(
        "state",
        [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED],
    )
    def test_terminal_states_are_final(self, state):
        """Test that no transition leaves a terminal state."""
        sm = RunStateMachine(state)

        assert sm.is_terminal
        assert sm.allowed_targets() == frozenset()
        for target in RunStatus:
            assert not sm.can_transition_to(target)

    def test_invalid_transition_message_lists_valid_targets(self):
        """Test error message content."""
        sm = RunStateMachine(RunStatus.WAITING_ON_TIMER)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.transition(RunStatus.COMPLETED)

        assert exc_info.value.from_state == "WAITING_ON_TIMER"
        assert exc_info.value.to_state == "COMPLETED"
        assert "CANCELLED" in str(exc_info.value)

    def test_history_tracking(self):
        """Test transitions are recorded in order."""
        sm = RunStateMachine()

        sm.transition(RunStatus.WAITING_ON_ACTION)
        sm.transition(RunStatus.RUNNING, triggered_by="action")
        sm.transition(RunStatus.COMPLETED)

        history = sm.history
        assert [c.to_status for c in history] == [
            RunStatus.WAITING_ON_ACTION,
            RunStatus.RUNNING,
            RunStatus.COMPLETED,
        ]
        assert history[1].triggered_by == "action"

    def test_history_is_immutable_copy(self):
        """Test that mutating the returned history has no effect."""
        sm = RunStateMachine()
        sm.transition(RunStatus.WAITING_ON_TIMER)

        sm.history.clear()

        assert len(sm.history) == 1

    def test_terminal_error_names_terminal_status(self):
        """Test leaving a terminal status says so."""
        sm = RunStateMachine(RunStatus.COMPLETED)

        with pytest.raises(InvalidStateTransitionError, match="COMPLETED is terminal"):
            sm.transition(RunStatus.RUNNING)
