"""
Run status lifecycle.

Every status change the engine makes goes through RunStateMachine, so a run
can never leave a terminal status or complete while parked on a timer.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from flow_engine.core.clock import utcnow


class RunStatus(str, Enum):
    """
    Possible statuses of a run.

    State transitions:
    - RUNNING -> RUNNING (advance to the next node)
    - RUNNING -> WAITING_ON_TIMER -> RUNNING (delay elapsed)
    - RUNNING -> WAITING_ON_ACTION -> RUNNING (action succeeded)
    - RUNNING -> WAITING_ON_ACTION -> FAILED (action failed after retries)
    - RUNNING -> COMPLETED | FAILED
    - Any non-terminal state -> CANCELLED
    """

    RUNNING = "RUNNING"                      # Being stepped by the engine
    WAITING_ON_TIMER = "WAITING_ON_TIMER"    # Parked at a Delay node
    WAITING_ON_ACTION = "WAITING_ON_ACTION"  # Parked at a Business node
    COMPLETED = "COMPLETED"                  # Reached the end of the flow
    FAILED = "FAILED"                        # Business action or condition failed
    CANCELLED = "CANCELLED"                  # Cancelled externally


class StatusChange(BaseModel):
    """One applied status change, kept for debugging a run's lifecycle."""

    from_status: RunStatus
    to_status: RunStatus
    at: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None
    triggered_by: Optional[str] = None  # engine, timer, action, user


class InvalidStateTransitionError(Exception):
    """A status change the run lifecycle does not allow."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        detail = f": {message}" if message else ""
        super().__init__(f"Run cannot move from {from_state} to {to_state}{detail}")


class RunStateMachine:
    """Guards status changes for a single run."""

    VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
        RunStatus.RUNNING: frozenset({
            RunStatus.RUNNING,
            RunStatus.WAITING_ON_TIMER,
            RunStatus.WAITING_ON_ACTION,
            RunStatus.COMPLETED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        }),
        # A timer wait has nothing that can fail; it only resumes or is cancelled
        RunStatus.WAITING_ON_TIMER: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
        RunStatus.WAITING_ON_ACTION: frozenset({
            RunStatus.RUNNING,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        }),
        RunStatus.COMPLETED: frozenset(),
        RunStatus.FAILED: frozenset(),
        RunStatus.CANCELLED: frozenset(),
    }

    TERMINAL_STATES: frozenset[RunStatus] = frozenset({
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    })

    WAITING_STATES: frozenset[RunStatus] = frozenset({
        RunStatus.WAITING_ON_TIMER,
        RunStatus.WAITING_ON_ACTION,
    })

    def __init__(self, status: RunStatus = RunStatus.RUNNING):
        self._status = status
        self._changes: list[StatusChange] = []

    @property
    def state(self) -> RunStatus:
        return self._status

    @property
    def history(self) -> list[StatusChange]:
        """Changes applied through this machine, oldest first (a copy)."""
        return list(self._changes)

    @property
    def is_terminal(self) -> bool:
        return self._status in self.TERMINAL_STATES

    @property
    def is_waiting(self) -> bool:
        """Parked on a Delay timer or an in-flight Business action."""
        return self._status in self.WAITING_STATES

    def allowed_targets(self) -> frozenset[RunStatus]:
        return self.VALID_TRANSITIONS[self._status]

    def can_transition_to(self, to_status: RunStatus) -> bool:
        return to_status in self.allowed_targets()

    def transition(
        self,
        to_status: RunStatus,
        reason: Optional[str] = None,
        triggered_by: Optional[str] = None,
    ) -> StatusChange:
        """
        Move the run to ``to_status``.

        Raises:
            InvalidStateTransitionError: If the lifecycle forbids the move;
                the message lists the statuses that are reachable
        """
        if not self.can_transition_to(to_status):
            allowed = sorted(s.value for s in self.allowed_targets())
            raise InvalidStateTransitionError(
                self._status.value,
                to_status.value,
                f"allowed: {allowed}" if allowed else f"{self._status.value} is terminal",
            )

        change = StatusChange(
            from_status=self._status,
            to_status=to_status,
            reason=reason,
            triggered_by=triggered_by,
        )
        self._changes.append(change)
        self._status = to_status
        return change
