"""
State machine definitions for workflow run and step states.

Implements explicit run status transitions with validation and history.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from workflow_automation.core.models import StateTransition, WorkflowRun, utcnow


class RunStatus(str, Enum):
    """
    Possible states for a workflow run.

    State transitions:
    - RUNNING -> COMPLETED | FAILED | CANCELLED | TIMED_OUT
    - RUNNING -> WAITING_APPROVAL | PAUSED (semi-terminal)
    - WAITING_APPROVAL | PAUSED -> CANCELLED
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    WAITING_APPROVAL = "waiting_approval"  # Stopped at an approval gate
    PAUSED = "paused"


class StepStatus(str, Enum):
    """Possible states for a step execution record."""

    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING_APPROVAL = "waiting_approval"


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition from {from_state} to {to_state}"
            + (f": {message}" if message else "")
        )


class RunStateMachine:
    """
    State machine for a workflow run's status.

    Wraps a run, validates each transition and records it in the run's
    status history.
    """

    # Valid state transitions: from_state -> [valid_to_states]
    VALID_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
        RunStatus.RUNNING: {
            RunStatus.COMPLETED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
            RunStatus.TIMED_OUT,
            RunStatus.WAITING_APPROVAL,
            RunStatus.PAUSED,
        },
        RunStatus.WAITING_APPROVAL: {RunStatus.CANCELLED},
        RunStatus.PAUSED: {RunStatus.CANCELLED},
        RunStatus.COMPLETED: set(),  # Terminal state
        RunStatus.FAILED: set(),     # Terminal state
        RunStatus.CANCELLED: set(),  # Terminal state
        RunStatus.TIMED_OUT: set(),  # Terminal state
    }

    # Terminal states - no further transitions allowed
    TERMINAL_STATES: set[RunStatus] = {
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
        RunStatus.TIMED_OUT,
    }

    # Run stops advancing but keeps its concurrency slot
    SUSPENDED_STATES: set[RunStatus] = {
        RunStatus.WAITING_APPROVAL,
        RunStatus.PAUSED,
    }

    # States from which a run may be cancelled
    CANCELLABLE_STATES: set[RunStatus] = {
        RunStatus.RUNNING,
        RunStatus.PAUSED,
        RunStatus.WAITING_APPROVAL,
    }

    # States that fire the run-completed callback
    NOTIFY_STATES: set[RunStatus] = {
        RunStatus.COMPLETED,
        RunStatus.FAILED,
    }

    def __init__(self, run: WorkflowRun):
        self.run = run

    @property
    def state(self) -> RunStatus:
        """Get current state."""
        return RunStatus(self.run.status)

    @property
    def is_running(self) -> bool:
        return self.state == RunStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal."""
        return self.state in self.TERMINAL_STATES

    @property
    def is_suspended(self) -> bool:
        """Check if the run is waiting on external intervention."""
        return self.state in self.SUSPENDED_STATES

    @property
    def is_cancellable(self) -> bool:
        return self.state in self.CANCELLABLE_STATES

    def can_transition_to(self, to_state: RunStatus) -> bool:
        """Check if transition to given state is valid."""
        return to_state in self.VALID_TRANSITIONS.get(self.state, set())

    def get_valid_transitions(self) -> set[RunStatus]:
        """Get all valid transitions from current state."""
        return self.VALID_TRANSITIONS.get(self.state, set()).copy()

    def transition(
        self,
        to_state: RunStatus,
        reason: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> StateTransition:
        """
        Transition the run to a new state.

        Args:
            to_state: Target state
            reason: Reason for transition
            timestamp: When the transition happened (defaults to now)

        Returns:
            StateTransition record

        Raises:
            InvalidStateTransitionError: If transition is not valid
        """
        if not self.can_transition_to(to_state):
            raise InvalidStateTransitionError(
                self.state.value,
                to_state.value,
                f"Valid transitions: {sorted(s.value for s in self.get_valid_transitions())}"
            )

        transition = StateTransition(
            from_state=self.state.value,
            to_state=to_state.value,
            timestamp=timestamp or utcnow(),
            reason=reason,
        )

        self.run.status_history.append(transition)
        self.run.status = to_state.value

        return transition
