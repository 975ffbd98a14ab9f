"""
Domain models for the workflow automation core.

All models use Pydantic for validation and serialization with full Python 3.11+ type hints.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique identifier, e.g. ``run_3f2a...``."""
    return f"{prefix}_{uuid4().hex}"


# ==================== Vocabularies ====================


class TriggerType(str, Enum):
    """Kinds of triggers that can start a workflow run."""

    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class ConditionOperator(str, Enum):
    """Operators supported by trigger and step conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    MATCHES_REGEX = "matches_regex"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class RetryBackoff(str, Enum):
    """Retry delay growth strategy."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class BuiltinActionType(str, Enum):
    """Action types executed inline by the engine."""

    DELAY = "delay"
    SET_VARIABLE = "set_variable"
    CONDITIONAL_BRANCH = "conditional_branch"
    APPROVAL = "approval"


class AuditEventType(str, Enum):
    """Audit log event types."""

    RUN_STARTED = "workflow.run_started"
    RUN_COMPLETED = "workflow.run_completed"
    RUN_FAILED = "workflow.run_failed"
    RUN_CANCELLED = "workflow.run_cancelled"
    RUN_RETRIED = "workflow.run_retried"
    RUN_TIMED_OUT = "workflow.run_timed_out"
    STEP_STARTED = "workflow.step_started"
    STEP_COMPLETED = "workflow.step_completed"
    STEP_FAILED = "workflow.step_failed"
    STEP_SKIPPED = "workflow.step_skipped"
    STEP_RETRIED = "workflow.step_retried"
    APPROVAL_REQUESTED = "workflow.approval_requested"


# ==================== Conditions ====================


class TriggerCondition(BaseModel):
    """A single field/operator/value predicate evaluated against a flat context."""

    field: str = Field(..., min_length=1, description="Dotted path into the context")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Operand (unused by exists/not_exists)")


# ==================== Triggers ====================


class EventTrigger(BaseModel):
    """Fires on an application event, optionally filtered."""

    type: Literal["event"] = "event"
    event_type: str = Field(..., min_length=1)
    channel_ids: Optional[list[str]] = Field(default=None, description="Channel allow-list")
    user_ids: Optional[list[str]] = Field(default=None, description="User allow-list")
    conditions: list[TriggerCondition] = Field(default_factory=list)


class ScheduleTrigger(BaseModel):
    """Fires when a 5-field cron expression matches (UTC only)."""

    type: Literal["schedule"] = "schedule"
    cron_expression: str = Field(..., min_length=1)
    # Accepted for forward compatibility; schedules are evaluated in UTC.
    timezone: str = Field(default="UTC")
    start_date: Optional[datetime] = Field(default=None)
    end_date: Optional[datetime] = Field(default=None)


class WebhookTrigger(BaseModel):
    """Fires on an inbound webhook call addressed to a specific workflow."""

    type: Literal["webhook"] = "webhook"
    methods: list[str] = Field(default_factory=lambda: ["POST"])
    content_type: Optional[str] = Field(default=None)
    conditions: list[TriggerCondition] = Field(default_factory=list)

    @field_validator("methods")
    @classmethod
    def normalize_methods(cls, v: list[str]) -> list[str]:
        """HTTP methods are compared case-insensitively."""
        return [method.upper() for method in v]


class ManualTrigger(BaseModel):
    """Fires on explicit user invocation, optionally restricted."""

    type: Literal["manual"] = "manual"
    allowed_user_ids: Optional[list[str]] = Field(default=None)
    allowed_roles: Optional[list[str]] = Field(default=None)
    conditions: list[TriggerCondition] = Field(default_factory=list)


WorkflowTrigger = Annotated[
    Union[EventTrigger, ScheduleTrigger, WebhookTrigger, ManualTrigger],
    Field(discriminator="type"),
]


# ==================== Actions ====================


class WorkflowAction(BaseModel):
    """
    Base action model.

    Unknown action types are kept as instances of this class with their
    extra fields preserved, so extension handlers see everything the
    workflow author wrote.
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, description="Action type key")


class DelayAction(WorkflowAction):
    type: Literal["delay"] = "delay"
    duration_ms: int = Field(..., ge=0)


class SetVariableAction(WorkflowAction):
    type: Literal["set_variable"] = "set_variable"
    variable_name: str = Field(..., min_length=1)
    value: Any = None


class ConditionalBranch(BaseModel):
    """One named branch of a conditional_branch action."""

    name: str = Field(..., min_length=1)
    conditions: list[TriggerCondition] = Field(default_factory=list)
    target_steps: list[str] = Field(default_factory=list)


class ConditionalBranchAction(WorkflowAction):
    type: Literal["conditional_branch"] = "conditional_branch"
    branches: list[ConditionalBranch] = Field(default_factory=list)
    default_steps: list[str] = Field(default_factory=list)


class ApprovalAction(WorkflowAction):
    type: Literal["approval"] = "approval"
    approver_ids: list[str] = Field(default_factory=list)
    message: str = Field(default="")
    timeout_ms: int = Field(default=86_400_000, ge=0)
    min_approvals: int = Field(default=1, ge=1)


class SendMessageAction(WorkflowAction):
    type: Literal["send_message"] = "send_message"
    channel_id: str
    content: str = ""


class HttpRequestAction(WorkflowAction):
    type: Literal["http_request"] = "http_request"
    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None


class TransformDataAction(WorkflowAction):
    type: Literal["transform_data"] = "transform_data"
    input: str = Field(..., description="Context path of the value to transform")
    transform: str = Field(default="identity")


class LoopAction(WorkflowAction):
    type: Literal["loop"] = "loop"
    collection: str = Field(..., description="Context path of the list to iterate")
    item_variable: str = "item"
    index_variable: str = "index"
    max_iterations: int = Field(default=1000, ge=0)


class ParallelAction(WorkflowAction):
    type: Literal["parallel"] = "parallel"
    branches: list[Any] = Field(default_factory=list)
    wait_for_all: bool = True


ACTION_MODELS: dict[str, type[WorkflowAction]] = {
    "delay": DelayAction,
    "set_variable": SetVariableAction,
    "conditional_branch": ConditionalBranchAction,
    "approval": ApprovalAction,
    "send_message": SendMessageAction,
    "http_request": HttpRequestAction,
    "transform_data": TransformDataAction,
    "loop": LoopAction,
    "parallel": ParallelAction,
}


def parse_action(data: Any) -> WorkflowAction:
    """Parse raw action data into the model registered for its ``type``."""
    if isinstance(data, WorkflowAction):
        return data
    if not isinstance(data, dict):
        raise ValueError("Action must be a mapping with a 'type' key")
    model = ACTION_MODELS.get(data.get("type"), WorkflowAction)
    return model.model_validate(data)


# ==================== Steps ====================


class StepSettings(BaseModel):
    """Per-step retry, failure and idempotency settings."""

    retry_attempts: int = Field(default=3, ge=0, le=100, description="Retries after the first attempt")
    retry_delay_ms: int = Field(default=1000, ge=0, description="Base retry delay")
    retry_backoff: RetryBackoff = Field(default=RetryBackoff.EXPONENTIAL)
    max_retry_delay_ms: int = Field(default=30_000, ge=0, description="Upper bound for any retry delay")
    skip_on_failure: bool = Field(default=False)
    idempotency_key: Optional[str] = Field(default=None, description="Templated dedup key")
    timeout_ms: Optional[int] = Field(default=None, gt=0, description="Per-attempt timeout")


class WorkflowStep(BaseModel):
    """One unit of work within a workflow."""

    id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1)
    action: SerializeAsAny[WorkflowAction]
    depends_on: Optional[list[str]] = Field(default=None)
    conditions: Optional[list[TriggerCondition]] = Field(default=None)
    input_mapping: Optional[dict[str, str]] = Field(default=None, description="input name -> context path")
    output_key: Optional[str] = Field(default=None)
    settings: StepSettings = Field(default_factory=StepSettings)

    @field_validator("action", mode="before")
    @classmethod
    def validate_action(cls, v: Any) -> WorkflowAction:
        return parse_action(v)

    @field_validator("depends_on")
    @classmethod
    def validate_dependencies(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        """Validate dependencies list."""
        if v is not None and len(v) != len(set(v)):
            raise ValueError("Duplicate dependencies not allowed")
        return v


# ==================== Workflow definition ====================


class InputDefinition(BaseModel):
    """A declared workflow input."""

    name: str = Field(..., min_length=1)
    type: str = Field(default="string")
    required: bool = Field(default=False)
    default_value: Optional[Any] = Field(default=None)
    description: Optional[str] = Field(default=None)


class WorkflowSettings(BaseModel):
    """Workflow-wide execution settings."""

    max_concurrent_executions: int = Field(default=10, ge=1)
    max_retry_attempts: int = Field(default=3, ge=0, description="Whole-run retries allowed via retry_run")
    max_execution_time_ms: int = Field(default=3_600_000, gt=0)
    continue_on_failure: bool = Field(default=False)
    audit_inputs_outputs: bool = Field(default=True)
    timezone: str = Field(default="UTC")


class WorkflowDefinition(BaseModel):
    """Complete workflow definition. Immutable for the duration of any run."""

    id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=128)
    description: Optional[str] = Field(default=None)
    version: str = Field(default="1.0.0")
    enabled: bool = Field(default=True)
    trigger: WorkflowTrigger
    steps: list[WorkflowStep] = Field(..., min_length=1)
    input_schema: list[InputDefinition] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    tags: list[str] = Field(default_factory=list)
    created_by: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        """Get step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


# ==================== Runtime records ====================


class RunTriggerInfo(BaseModel):
    """What started a run, and the payload that seeds its context."""

    type: TriggerType
    event_type: Optional[str] = None
    event_data: Optional[dict[str, Any]] = None
    webhook_data: Optional[dict[str, Any]] = None
    user_id: Optional[str] = None
    scheduled_time: Optional[datetime] = None

    @property
    def payload(self) -> dict[str, Any]:
        """Trigger data: event payload, else webhook payload, else empty."""
        if self.event_data is not None:
            return self.event_data
        if self.webhook_data is not None:
            return self.webhook_data
        return {}


class ExecutionContext(BaseModel):
    """Mutable per-run context owned by the engine during the run."""

    inputs: dict[str, Any] = Field(default_factory=dict)
    step_outputs: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    trigger_data: dict[str, Any] = Field(default_factory=dict)


class WorkflowError(BaseModel):
    """Error attached to a failed run or step."""

    code: str
    message: str
    retryable: bool = False
    step_id: Optional[str] = None


class StepExecutionRecord(BaseModel):
    """Runtime record of one step in one run."""

    step_id: str
    step_name: str
    status: str = Field(default="running")
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    retry_count: int = Field(default=0, ge=0)
    skipped: bool = False
    skip_reason: Optional[str] = None
    input: Optional[dict[str, Any]] = None
    output: Optional[Any] = None
    error: Optional[WorkflowError] = None


class StateTransition(BaseModel):
    """Represents a run status transition."""

    from_state: str
    to_state: str
    timestamp: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None


class WorkflowRun(BaseModel):
    """One execution attempt of a workflow."""

    id: str = Field(default_factory=lambda: generate_id("run"))
    workflow_id: str
    workflow_version: str
    status: str = Field(default="running")
    triggered_by: RunTriggerInfo
    context: ExecutionContext = Field(default_factory=ExecutionContext)
    step_results: list[StepExecutionRecord] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=0, ge=0)
    error: Optional[WorkflowError] = None
    status_history: list[StateTransition] = Field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[int]:
        """Wall-clock duration once the run has finished."""
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


class WorkflowAuditEntry(BaseModel):
    """Append-only audit log entry."""

    id: str = Field(default_factory=lambda: generate_id("audit"))
    event_type: AuditEventType
    workflow_id: str
    run_id: Optional[str] = None
    step_id: Optional[str] = None
    actor_id: str = "system"
    timestamp: datetime = Field(default_factory=utcnow)
    description: str = ""
    data: Optional[dict[str, Any]] = None


class TriggerMatch(BaseModel):
    """A workflow whose trigger matched, with the trigger info to seed its run."""

    workflow: WorkflowDefinition
    trigger_info: RunTriggerInfo

    @model_validator(mode="after")
    def validate_trigger_type(self) -> "TriggerMatch":
        """The trigger info must describe the workflow's own trigger kind."""
        if self.trigger_info.type.value != self.workflow.trigger.type:
            raise ValueError(
                f"Trigger info type '{self.trigger_info.type.value}' does not match "
                f"workflow trigger type '{self.workflow.trigger.type}'"
            )
        return self
