"""Core domain models and business logic."""

from workflow_automation.core.models import (
    BuiltinActionType,
    AuditEventType,
    ExecutionContext,
    RunTriggerInfo,
    StepExecutionRecord,
    StepSettings,
    TriggerCondition,
    TriggerMatch,
    TriggerType,
    WorkflowAction,
    WorkflowAuditEntry,
    WorkflowDefinition,
    WorkflowRun,
    WorkflowSettings,
    WorkflowStep,
)
from workflow_automation.core.state_machine import (
    InvalidStateTransitionError,
    RunStateMachine,
    RunStatus,
    StepStatus,
)
from workflow_automation.core.conditions import evaluate_condition, evaluate_conditions
from workflow_automation.core.dag import (
    StepGraphValidator,
    WorkflowValidationError,
    resolve_execution_order,
)
from workflow_automation.core.exceptions import (
    ApprovalRequiredError,
    DispatchError,
    ExecutionError,
    ExecutionErrorCode,
)

__all__ = [
    "BuiltinActionType",
    "AuditEventType",
    "ExecutionContext",
    "RunTriggerInfo",
    "StepExecutionRecord",
    "StepSettings",
    "TriggerCondition",
    "TriggerMatch",
    "TriggerType",
    "WorkflowAction",
    "WorkflowAuditEntry",
    "WorkflowDefinition",
    "WorkflowRun",
    "WorkflowSettings",
    "WorkflowStep",
    "InvalidStateTransitionError",
    "RunStateMachine",
    "RunStatus",
    "StepStatus",
    "evaluate_condition",
    "evaluate_conditions",
    "StepGraphValidator",
    "WorkflowValidationError",
    "resolve_execution_order",
    "ApprovalRequiredError",
    "DispatchError",
    "ExecutionError",
    "ExecutionErrorCode",
]
