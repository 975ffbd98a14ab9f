"""
Exception types raised by the execution engine and dispatcher.
"""

from enum import Enum
from typing import Any, Optional


class ExecutionErrorCode(str, Enum):
    """Structural failure codes."""

    CONCURRENCY_LIMIT_EXCEEDED = "CONCURRENCY_LIMIT_EXCEEDED"
    MISSING_INPUT = "MISSING_INPUT"
    RUN_NOT_FOUND = "RUN_NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    STEP_EXECUTION_FAILED = "STEP_EXECUTION_FAILED"
    UNKNOWN_ACTION_TYPE = "UNKNOWN_ACTION_TYPE"
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    STEP_FAILED = "STEP_FAILED"


class ExecutionError(Exception):
    """Structural failure of a run or of an engine operation."""

    def __init__(
        self,
        message: str,
        code: ExecutionErrorCode | str,
        retryable: bool = False,
        step_id: Optional[str] = None,
    ):
        self.code = code.value if isinstance(code, ExecutionErrorCode) else code
        self.retryable = retryable
        self.step_id = step_id
        super().__init__(message)


class ApprovalRequiredError(Exception):
    """
    Control-flow signal raised by an approval step.

    Not a failure: the engine moves the run to ``waiting_approval`` and
    stops the walk.
    """

    def __init__(self, step_id: str, action: Any):
        self.step_id = step_id
        self.action = action
        super().__init__(f"Approval required for step: {step_id}")


class DispatchError(Exception):
    """Raised by the dispatcher for unknown or disabled workflows."""

    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)
