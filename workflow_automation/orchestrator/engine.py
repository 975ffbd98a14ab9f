"""
Workflow execution engine.

Owns the lifecycle of workflow runs: input validation, concurrency limits,
dependency-ordered step execution, retries with backoff, idempotency,
timeouts, approval gates and the audit log.
"""

import asyncio
import inspect
import logging
import threading
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

from workflow_automation.config import EngineSettings, get_settings
from workflow_automation.core.conditions import evaluate_conditions
from workflow_automation.core.dag import resolve_execution_order
from workflow_automation.core.exceptions import (
    ApprovalRequiredError,
    ExecutionError,
    ExecutionErrorCode,
)
from workflow_automation.core.models import (
    ApprovalAction,
    AuditEventType,
    BuiltinActionType,
    ConditionalBranchAction,
    DelayAction,
    ExecutionContext,
    RetryBackoff,
    RunTriggerInfo,
    SetVariableAction,
    StepExecutionRecord,
    StepSettings,
    WorkflowAction,
    WorkflowAuditEntry,
    WorkflowDefinition,
    WorkflowError,
    WorkflowRun,
    WorkflowStep,
    utcnow,
)
from workflow_automation.core.state_machine import RunStateMachine, RunStatus, StepStatus
from workflow_automation.orchestrator.handlers import (
    ActionHandlerRegistry,
    create_default_handlers,
)
from workflow_automation.orchestrator.idempotency import IdempotencyStore
from workflow_automation.template.resolver import TemplateResolver, build_evaluation_context

logger = logging.getLogger(__name__)

SleepFn = Callable[[int], Awaitable[None]]
NowFn = Callable[[], datetime]


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class WorkflowExecutionEngine:
    """
    Executes workflow runs step by step.

    A call to ``start_run`` returns once the run is terminal or suspended
    (waiting for approval or paused). Runs of the same or different
    workflows may be in flight concurrently; each workflow caps its own
    number of active runs.

    Sleep (retry backoff and ``delay`` actions) and the clock are
    injectable so timing can be tested without waiting.
    """

    def __init__(
        self,
        action_handlers: Optional[ActionHandlerRegistry] = None,
        settings: Optional[EngineSettings] = None,
        sleep_fn: Optional[SleepFn] = None,
        now_fn: Optional[NowFn] = None,
        idempotency_store: Optional[IdempotencyStore] = None,
    ):
        self.settings = settings or get_settings().engine
        self.action_handlers = (
            action_handlers if action_handlers is not None else create_default_handlers()
        )
        self._sleep_fn = sleep_fn
        self._now_fn = now_fn or utcnow

        if idempotency_store is None:
            idempotency_settings = get_settings().idempotency
            idempotency_store = IdempotencyStore(
                max_keys=idempotency_settings.max_keys,
                ttl_seconds=idempotency_settings.ttl_seconds,
            )
        self._idempotency = idempotency_store

        # Shared across concurrent runs
        self._runs: OrderedDict[str, WorkflowRun] = OrderedDict()
        self._active_runs: dict[str, set[str]] = {}
        self._audit_log: deque[WorkflowAuditEntry] = deque(
            maxlen=self.settings.max_audit_entries
        )
        self._lock = threading.RLock()

        # (run_id, step_id, action) -> None
        self.on_approval_request: Optional[Callable[[str, str, ApprovalAction], None]] = None
        # (run) -> None; fired for completed and failed runs only
        self.on_run_completed: Optional[Callable[[WorkflowRun], None]] = None

    # ==================== Run Management ====================

    async def start_run(
        self,
        workflow: WorkflowDefinition,
        trigger_info: RunTriggerInfo,
        inputs: Optional[dict[str, Any]] = None,
    ) -> WorkflowRun:
        """
        Create a run for ``workflow`` and execute it.

        Raises:
            ExecutionError: CONCURRENCY_LIMIT_EXCEEDED or MISSING_INPUT; no
                run is created in either case
        """
        return await self._start_run(workflow, trigger_info, inputs)

    async def _start_run(
        self,
        workflow: WorkflowDefinition,
        trigger_info: RunTriggerInfo,
        inputs: Optional[dict[str, Any]],
        retry_count: int = 0,
    ) -> WorkflowRun:
        inputs = dict(inputs or {})

        with self._lock:
            limit = workflow.settings.max_concurrent_executions
            if len(self._active_runs.get(workflow.id, ())) >= limit:
                logger.warning(
                    f"Workflow {workflow.id} rejected run: concurrency limit {limit} reached"
                )
                raise ExecutionError(
                    f"Workflow '{workflow.name}' has reached its concurrency limit ({limit})",
                    ExecutionErrorCode.CONCURRENCY_LIMIT_EXCEEDED,
                )

            for definition in workflow.input_schema:
                if not definition.required or definition.name in inputs:
                    continue
                if definition.default_value is None:
                    raise ExecutionError(
                        f"Required input '{definition.name}' is missing",
                        ExecutionErrorCode.MISSING_INPUT,
                    )
                inputs[definition.name] = definition.default_value

            run = WorkflowRun(
                workflow_id=workflow.id,
                workflow_version=workflow.version,
                triggered_by=trigger_info,
                context=ExecutionContext(
                    inputs=inputs,
                    trigger_data=dict(trigger_info.payload),
                ),
                started_at=self._now(),
                retry_count=retry_count,
                max_retries=workflow.settings.max_retry_attempts,
            )
            self._store_run(run)
            self._active_runs.setdefault(workflow.id, set()).add(run.id)

        audit_data: dict[str, Any] = {"trigger_type": trigger_info.type.value}
        if workflow.settings.audit_inputs_outputs:
            audit_data["inputs"] = dict(inputs)
        self._audit(AuditEventType.RUN_STARTED, workflow.id, run.id, data=audit_data)
        logger.info(f"Run {run.id} started for workflow {workflow.id}")

        machine = RunStateMachine(run)
        try:
            await self._execute_steps(workflow, run, machine)

            if machine.is_running:
                now = self._now()
                machine.transition(RunStatus.COMPLETED, timestamp=now)
                run.completed_at = now
                self._audit(
                    AuditEventType.RUN_COMPLETED,
                    workflow.id,
                    run.id,
                    data={"duration_ms": run.duration_ms},
                )
                logger.info(f"Run {run.id} completed in {run.duration_ms}ms")
        except ExecutionError as e:
            self._fail_run(workflow, run, machine, e.code, str(e), e.retryable, e.step_id)
        except Exception as e:
            self._fail_run(
                workflow, run, machine, ExecutionErrorCode.EXECUTION_FAILED.value, str(e), False
            )
        finally:
            if not machine.is_suspended:
                self._untrack_run(workflow.id, run.id)

        if self.on_run_completed and machine.state in RunStateMachine.NOTIFY_STATES:
            self.on_run_completed(run)

        return run

    def _fail_run(
        self,
        workflow: WorkflowDefinition,
        run: WorkflowRun,
        machine: RunStateMachine,
        code: str,
        message: str,
        retryable: bool,
        step_id: Optional[str] = None,
    ) -> None:
        # A run cancelled while its last step was failing stays cancelled
        if not machine.is_running:
            return

        now = self._now()
        run.error = WorkflowError(
            code=code, message=message, retryable=retryable, step_id=step_id
        )
        machine.transition(RunStatus.FAILED, reason=code, timestamp=now)
        run.completed_at = now
        self._audit(
            AuditEventType.RUN_FAILED,
            workflow.id,
            run.id,
            data={"error": run.error.model_dump()},
        )
        logger.error(f"Run {run.id} failed [{code}]: {message}")

    def cancel_run(self, run_id: str) -> WorkflowRun:
        """
        Cancel a running, paused or approval-gated run.

        Cancellation is observed between steps; an in-flight step finishes
        first.
        """
        with self._lock:
            run = self._require_run(run_id)
            machine = RunStateMachine(run)
            if not machine.is_cancellable:
                raise ExecutionError(
                    f"Cannot cancel run in '{run.status}' status",
                    ExecutionErrorCode.INVALID_STATUS,
                )

            now = self._now()
            machine.transition(RunStatus.CANCELLED, reason="cancelled", timestamp=now)
            run.completed_at = now
            self._untrack_run(run.workflow_id, run.id)

        self._audit(AuditEventType.RUN_CANCELLED, run.workflow_id, run.id)
        logger.info(f"Run {run.id} cancelled")
        return run

    async def retry_run(self, run_id: str, workflow: WorkflowDefinition) -> WorkflowRun:
        """
        Start a fresh run from a failed one's trigger and inputs.

        The failed run is left untouched; the new run's ``retry_count`` is
        one higher.
        """
        original = self._require_run(run_id)

        if original.status != RunStatus.FAILED.value:
            raise ExecutionError(
                f"Cannot retry run in '{original.status}' status",
                ExecutionErrorCode.INVALID_STATUS,
            )
        if original.retry_count >= original.max_retries:
            raise ExecutionError(
                "Maximum retry attempts reached",
                ExecutionErrorCode.MAX_RETRIES_EXCEEDED,
            )

        retry_count = original.retry_count + 1
        self._audit(
            AuditEventType.RUN_RETRIED,
            workflow.id,
            original.id,
            data={"retry_count": retry_count},
        )
        logger.info(f"Retrying run {original.id} (retry {retry_count})")

        return await self._start_run(
            workflow,
            original.triggered_by,
            original.context.inputs,
            retry_count=retry_count,
        )

    # ==================== Step Execution ====================

    async def _execute_steps(
        self,
        workflow: WorkflowDefinition,
        run: WorkflowRun,
        machine: RunStateMachine,
    ) -> None:
        """Walk steps once in dependency order."""
        steps_by_id: dict[str, WorkflowStep] = {}
        for step in workflow.steps:
            steps_by_id.setdefault(step.id, step)

        executed: set[str] = set()

        for step_id in self.resolve_execution_order(workflow.steps):
            if not machine.is_running:
                break

            step = steps_by_id[step_id]

            if step.depends_on and not all(dep in executed for dep in step.depends_on):
                # Not marked executed: dependents are skipped too
                self._skip_step(workflow, run, step, "Dependencies not satisfied")
                continue

            if step.conditions:
                if not evaluate_conditions(step.conditions, build_evaluation_context(run.context)):
                    self._skip_step(workflow, run, step, "Conditions not met")
                    executed.add(step_id)
                    continue

            if step.settings.idempotency_key:
                resolver = TemplateResolver(run.context, extra={"run_id": run.id})
                key = resolver.interpolate(step.settings.idempotency_key)
                with self._lock:
                    duplicate = self._idempotency.check_and_add(key)
                if duplicate:
                    logger.warning(f"Step {step.id} of run {run.id} skipped: duplicate key {key}")
                    self._skip_step(
                        workflow, run, step, f"Idempotency key already processed: {key}"
                    )
                    executed.add(step_id)
                    continue

            await self._execute_step(workflow, run, step, machine)
            executed.add(step_id)

            if not machine.is_running:
                break

            now = self._now()
            limit_ms = workflow.settings.max_execution_time_ms
            if _elapsed_ms(run.started_at, now) > limit_ms:
                run.error = WorkflowError(
                    code=ExecutionErrorCode.EXECUTION_TIMEOUT.value,
                    message=f"Workflow exceeded maximum execution time of {limit_ms}ms",
                    retryable=True,
                )
                machine.transition(
                    RunStatus.TIMED_OUT,
                    reason=ExecutionErrorCode.EXECUTION_TIMEOUT.value,
                    timestamp=now,
                )
                run.completed_at = now
                self._audit(
                    AuditEventType.RUN_TIMED_OUT,
                    workflow.id,
                    run.id,
                    step_id=step.id,
                    data={"error": run.error.model_dump()},
                )
                logger.warning(f"Run {run.id} timed out after step {step.id}")
                break

    def _skip_step(
        self,
        workflow: WorkflowDefinition,
        run: WorkflowRun,
        step: WorkflowStep,
        reason: str,
    ) -> None:
        run.step_results.append(
            StepExecutionRecord(
                step_id=step.id,
                step_name=step.name,
                status=StepStatus.SKIPPED.value,
                started_at=self._now(),
                skipped=True,
                skip_reason=reason,
            )
        )
        self._audit(
            AuditEventType.STEP_SKIPPED,
            workflow.id,
            run.id,
            step_id=step.id,
            data={"reason": reason},
        )
        logger.debug(f"Step {step.id} of run {run.id} skipped: {reason}")

    async def _execute_step(
        self,
        workflow: WorkflowDefinition,
        run: WorkflowRun,
        step: WorkflowStep,
        machine: RunStateMachine,
    ) -> None:
        """Run one step with retries; raises STEP_EXECUTION_FAILED unless downgraded."""
        settings = step.settings
        attempts = settings.retry_attempts + 1

        record = StepExecutionRecord(
            step_id=step.id,
            step_name=step.name,
            status=StepStatus.RUNNING.value,
            started_at=self._now(),
        )
        if workflow.settings.audit_inputs_outputs and step.input_mapping:
            record.input = TemplateResolver(run.context).resolve_mapping(step.input_mapping)
        run.step_results.append(record)

        self._audit(AuditEventType.STEP_STARTED, workflow.id, run.id, step_id=step.id)

        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            if attempt > 0:
                record.retry_count = attempt
                record.status = StepStatus.RETRYING.value
                delay = self.calculate_retry_delay(settings, attempt)
                self._audit(
                    AuditEventType.STEP_RETRIED,
                    workflow.id,
                    run.id,
                    step_id=step.id,
                    data={"attempt": attempt, "delay_ms": delay},
                )
                logger.debug(f"Retrying step {step.id} in {delay}ms (retry {attempt})")
                await self._sleep(delay)

            try:
                result = await self._run_attempt(step, run)
            except ApprovalRequiredError as e:
                record.status = StepStatus.WAITING_APPROVAL.value
                if machine.is_running:
                    machine.transition(
                        RunStatus.WAITING_APPROVAL,
                        reason=f"approval required for step {step.id}",
                        timestamp=self._now(),
                    )
                self._audit(
                    AuditEventType.APPROVAL_REQUESTED,
                    workflow.id,
                    run.id,
                    step_id=step.id,
                    data={
                        "approver_ids": list(getattr(e.action, "approver_ids", [])),
                        "message": getattr(e.action, "message", ""),
                    },
                )
                logger.info(f"Run {run.id} waiting for approval at step {step.id}")
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Step {step.id} of run {run.id} failed (attempt {attempt + 1}/{attempts}): {e}"
                )
                continue

            if step.output_key:
                run.context.step_outputs[step.output_key] = result

            record.status = StepStatus.COMPLETED.value
            record.completed_at = self._now()
            record.duration_ms = _elapsed_ms(record.started_at, record.completed_at)
            record.output = result

            self._audit(
                AuditEventType.STEP_COMPLETED,
                workflow.id,
                run.id,
                step_id=step.id,
                data={"duration_ms": record.duration_ms},
            )
            return

        message = str(last_error) if last_error else "Unknown error"
        record.status = StepStatus.FAILED.value
        record.completed_at = self._now()
        record.duration_ms = _elapsed_ms(record.started_at, record.completed_at)
        record.error = WorkflowError(
            code=ExecutionErrorCode.STEP_FAILED.value,
            message=message,
            step_id=step.id,
        )

        self._audit(
            AuditEventType.STEP_FAILED,
            workflow.id,
            run.id,
            step_id=step.id,
            data={"error": record.error.model_dump(), "attempts": attempts},
        )

        if settings.skip_on_failure or workflow.settings.continue_on_failure:
            record.status = StepStatus.SKIPPED.value
            record.skip_reason = (
                f"Step failed after {attempts} attempts, skipped due to failure policy"
            )
            self._audit(
                AuditEventType.STEP_SKIPPED,
                workflow.id,
                run.id,
                step_id=step.id,
                data={"reason": record.skip_reason},
            )
            logger.warning(f"Step {step.id} of run {run.id} failed; continuing")
            return

        raise ExecutionError(
            f"Step '{step.name}' failed after {attempts} attempts: {message}",
            ExecutionErrorCode.STEP_EXECUTION_FAILED,
            step_id=step.id,
        )

    async def _run_attempt(self, step: WorkflowStep, run: WorkflowRun) -> Any:
        timeout_ms = step.settings.timeout_ms
        if timeout_ms is None:
            return await self._execute_action(step.action, run, step)

        try:
            async with asyncio.timeout(timeout_ms / 1000):
                return await self._execute_action(step.action, run, step)
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"Step '{step.id}' timed out after {timeout_ms}ms",
                ExecutionErrorCode.EXECUTION_TIMEOUT,
                retryable=True,
                step_id=step.id,
            )

    async def _execute_action(
        self,
        action: WorkflowAction,
        run: WorkflowRun,
        step: WorkflowStep,
    ) -> Any:
        """Dispatch to a built-in action, else to the handler registry."""
        action_type = action.type

        if action_type == BuiltinActionType.DELAY.value:
            return await self._execute_delay(action)
        if action_type == BuiltinActionType.SET_VARIABLE.value:
            return self._execute_set_variable(action, run.context)
        if action_type == BuiltinActionType.CONDITIONAL_BRANCH.value:
            return self._execute_conditional_branch(action, run.context)
        if action_type == BuiltinActionType.APPROVAL.value:
            return self._execute_approval(action, run, step)

        handler = self.action_handlers.get(action_type)
        if handler is None:
            raise ExecutionError(
                f"No handler registered for action type: {action_type}",
                ExecutionErrorCode.UNKNOWN_ACTION_TYPE,
                step_id=step.id,
            )

        result = handler(action, run.context, step)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ==================== Built-in Actions ====================

    async def _execute_delay(self, action: DelayAction) -> dict[str, int]:
        await self._sleep(action.duration_ms)
        return {"delayed": action.duration_ms}

    def _execute_set_variable(
        self,
        action: SetVariableAction,
        context: ExecutionContext,
    ) -> dict[str, Any]:
        value = action.value
        if isinstance(value, str):
            value = TemplateResolver(context).interpolate(value)
        context.variables[action.variable_name] = value
        return {"variable_name": action.variable_name, "value": value}

    def _execute_conditional_branch(
        self,
        action: ConditionalBranchAction,
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """First branch whose conditions all hold wins."""
        values = build_evaluation_context(context)
        for branch in action.branches:
            if evaluate_conditions(branch.conditions, values):
                return {"branch": branch.name, "matched": True}
        return {"branch": "default", "matched": False}

    def _execute_approval(
        self,
        action: ApprovalAction,
        run: WorkflowRun,
        step: WorkflowStep,
    ) -> None:
        if self.on_approval_request:
            self.on_approval_request(run.id, step.id, action)
        raise ApprovalRequiredError(step.id, action)

    # ==================== Ordering & Retry ====================

    def resolve_execution_order(self, steps: Sequence[WorkflowStep]) -> list[str]:
        return resolve_execution_order(steps)

    @staticmethod
    def calculate_retry_delay(settings: StepSettings, attempt: int) -> int:
        """
        Delay before retry number ``attempt`` (1-based).

        fixed: base; linear: base * attempt; exponential: base * 2^(attempt-1).
        Always clamped to ``max_retry_delay_ms``.
        """
        base = settings.retry_delay_ms

        if settings.retry_backoff == RetryBackoff.LINEAR:
            delay = base * attempt
        elif settings.retry_backoff == RetryBackoff.EXPONENTIAL:
            delay = base * 2 ** (attempt - 1)
        else:
            delay = base

        return min(delay, settings.max_retry_delay_ms)

    # ==================== Queries ====================

    def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        with self._lock:
            return self._runs.get(run_id)

    def list_runs(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowRun]:
        with self._lock:
            runs = list(self._runs.values())
        if workflow_id:
            runs = [r for r in runs if r.workflow_id == workflow_id]
        if status:
            runs = [r for r in runs if r.status == status]
        return runs

    def get_audit_log(
        self,
        workflow_id: Optional[str] = None,
        run_id: Optional[str] = None,
        event_type: Optional[AuditEventType | str] = None,
    ) -> list[WorkflowAuditEntry]:
        with self._lock:
            entries = list(self._audit_log)
        if workflow_id:
            entries = [e for e in entries if e.workflow_id == workflow_id]
        if run_id:
            entries = [e for e in entries if e.run_id == run_id]
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        return entries

    def get_active_run_count(self, workflow_id: str) -> int:
        with self._lock:
            return len(self._active_runs.get(workflow_id, ()))

    def clear(self) -> None:
        """Drop all runs, active-run slots, idempotency keys and audit entries."""
        with self._lock:
            self._runs.clear()
            self._active_runs.clear()
            self._audit_log.clear()
            self._idempotency.clear()

    # ==================== Helpers ====================

    def _require_run(self, run_id: str) -> WorkflowRun:
        with self._lock:
            run = self._runs.get(run_id)
        if run is None:
            raise ExecutionError(f"Run not found: {run_id}", ExecutionErrorCode.RUN_NOT_FOUND)
        return run

    def _store_run(self, run: WorkflowRun) -> None:
        """Store a run, evicting the oldest terminal runs beyond the history limit."""
        self._runs[run.id] = run
        excess = len(self._runs) - self.settings.max_run_history
        if excess <= 0:
            return

        evictable = [
            run_id
            for run_id, stored in self._runs.items()
            if RunStatus(stored.status) in RunStateMachine.TERMINAL_STATES
        ]
        for run_id in evictable[:excess]:
            del self._runs[run_id]

    def _untrack_run(self, workflow_id: str, run_id: str) -> None:
        with self._lock:
            active = self._active_runs.get(workflow_id)
            if active is not None:
                active.discard(run_id)

    def _audit(
        self,
        event_type: AuditEventType,
        workflow_id: str,
        run_id: Optional[str] = None,
        step_id: Optional[str] = None,
        actor_id: str = "system",
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        if not self.settings.enable_audit:
            return

        description = event_type.value + (f" (step: {step_id})" if step_id else "")
        entry = WorkflowAuditEntry(
            event_type=event_type,
            workflow_id=workflow_id,
            run_id=run_id,
            step_id=step_id,
            actor_id=actor_id,
            timestamp=self._now(),
            description=description,
            data=data,
        )
        with self._lock:
            self._audit_log.append(entry)

    async def _sleep(self, ms: int) -> None:
        if self._sleep_fn is not None:
            await self._sleep_fn(ms)
        else:
            await asyncio.sleep(ms / 1000)

    def _now(self) -> datetime:
        return self._now_fn()
