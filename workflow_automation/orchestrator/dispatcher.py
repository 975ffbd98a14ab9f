"""
Glue between trigger matching and run execution.

The dispatcher owns the registered definitions (through the trigger
engine), turns trigger matches into runs and drives schedule triggers from
a background minute tick.

Run as a module to serve schedule triggers from a definitions file:

    python -m workflow_automation.orchestrator.dispatcher workflows.json
"""

import argparse
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from workflow_automation.config import Settings, configure_logging, get_settings
from workflow_automation.core.dag import StepGraphValidator, WorkflowValidationError
from workflow_automation.core.exceptions import (
    DispatchError,
    ExecutionError,
    ExecutionErrorCode,
)
from workflow_automation.core.models import (
    RunTriggerInfo,
    TriggerMatch,
    WorkflowDefinition,
    WorkflowRun,
    utcnow,
)
from workflow_automation.orchestrator.engine import WorkflowExecutionEngine
from workflow_automation.orchestrator.idempotency import IdempotencyStore
from workflow_automation.triggers.engine import TriggerEngine

logger = logging.getLogger(__name__)

WORKFLOW_NOT_FOUND = "WORKFLOW_NOT_FOUND"
WORKFLOW_DISABLED = "WORKFLOW_DISABLED"


def load_definitions(path: str | Path) -> list[WorkflowDefinition]:
    """Load workflow definitions from a JSON file holding a list of definitions."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list of workflow definitions in {path}")

    return [WorkflowDefinition.model_validate(item) for item in data]


class WorkflowDispatcher:
    """
    Starts runs for workflows whose triggers match.

    Responsibilities:
    - Validate and register workflow definitions
    - Turn events, webhooks, manual requests and clock ticks into runs
    - Drive schedule triggers from a background task
    """

    def __init__(
        self,
        trigger_engine: Optional[TriggerEngine] = None,
        execution_engine: Optional[WorkflowExecutionEngine] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.trigger_engine = trigger_engine or TriggerEngine()

        if execution_engine is None:
            execution_engine = WorkflowExecutionEngine(
                settings=self.settings.engine,
                idempotency_store=IdempotencyStore(
                    max_keys=self.settings.idempotency.max_keys,
                    ttl_seconds=self.settings.idempotency.ttl_seconds,
                ),
            )
        self.execution_engine = execution_engine

        self._running = False
        self._tick_task: Optional[asyncio.Task] = None
        self._last_tick: Optional[datetime] = None

    # ==================== Registration ====================

    def register_workflow(self, workflow: WorkflowDefinition, validate: bool = True) -> None:
        """
        Register a workflow for trigger matching.

        Raises:
            WorkflowValidationError: If ``validate`` and the step graph has
                duplicate ids, dangling dependencies or cycles
        """
        if validate:
            result = StepGraphValidator(workflow.steps).validate()
            if not result.is_valid:
                raise WorkflowValidationError(workflow.id, result.errors)

        self.trigger_engine.register_workflow(workflow)
        logger.info(f"Registered workflow {workflow.id} v{workflow.version}")

    def unregister_workflow(self, workflow_id: str) -> bool:
        return self.trigger_engine.unregister_workflow(workflow_id)

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self.trigger_engine.get_workflow(workflow_id)

    def list_workflows(self) -> list[WorkflowDefinition]:
        return self.trigger_engine.get_registered_workflows()

    def enable_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self._set_enabled(workflow_id, True)

    def disable_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return self._set_enabled(workflow_id, False)

    def _set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowDefinition:
        # Definitions are never mutated in place; runs may still hold the old one
        workflow = self._require_workflow(workflow_id)
        updated = workflow.model_copy(update={"enabled": enabled, "updated_at": utcnow()})
        self.trigger_engine.register_workflow(updated)
        logger.info(f"Workflow {workflow_id} {'enabled' if enabled else 'disabled'}")
        return updated

    def _require_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = self.trigger_engine.get_workflow(workflow_id)
        if workflow is None:
            raise DispatchError(f"Workflow not found: {workflow_id}", WORKFLOW_NOT_FOUND)
        return workflow

    # ==================== Execution ====================

    async def execute_workflow(
        self,
        workflow_id: str,
        trigger_info: RunTriggerInfo,
        inputs: Optional[dict[str, Any]] = None,
    ) -> WorkflowRun:
        """Start a run of a registered, enabled workflow directly."""
        workflow = self._require_workflow(workflow_id)
        if not workflow.enabled:
            raise DispatchError(f"Workflow is disabled: {workflow_id}", WORKFLOW_DISABLED)
        return await self.execution_engine.start_run(workflow, trigger_info, inputs)

    async def handle_event(
        self,
        event_type: str,
        event_data: Mapping[str, Any],
    ) -> list[WorkflowRun]:
        matches = self.trigger_engine.evaluate_event(event_type, event_data)
        return await self._start_matches(matches)

    async def handle_schedule_tick(self, now: Optional[datetime] = None) -> list[WorkflowRun]:
        matches = self.trigger_engine.evaluate_schedule(now or utcnow())
        return await self._start_matches(matches)

    async def handle_webhook(
        self,
        workflow_id: str,
        method: str,
        body: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[WorkflowRun]:
        match = self.trigger_engine.evaluate_webhook(workflow_id, method, body, headers or {})
        if match is None:
            return None
        runs = await self._start_matches([match])
        return runs[0] if runs else None

    async def handle_manual(
        self,
        workflow_id: str,
        user_id: str,
        user_roles: Sequence[str] = (),
        input_data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[WorkflowRun]:
        """Manual requests also pass their input data as run inputs."""
        input_data = dict(input_data or {})
        match = self.trigger_engine.evaluate_manual(workflow_id, user_id, user_roles, input_data)
        if match is None:
            return None
        runs = await self._start_matches([match], inputs=input_data)
        return runs[0] if runs else None

    async def _start_matches(
        self,
        matches: Sequence[TriggerMatch],
        inputs: Optional[dict[str, Any]] = None,
    ) -> list[WorkflowRun]:
        """Start one run per match; matches at their concurrency limit are skipped."""
        runs: list[WorkflowRun] = []

        for match in matches:
            try:
                run = await self.execution_engine.start_run(
                    match.workflow, match.trigger_info, inputs
                )
            except ExecutionError as e:
                if e.code != ExecutionErrorCode.CONCURRENCY_LIMIT_EXCEEDED.value:
                    raise
                logger.warning(f"Skipped {match.trigger_info.type.value} run of {match.workflow.id}: {e}")
                continue
            runs.append(run)

        return runs

    # ==================== Schedule Loop ====================

    async def start(self) -> None:
        """Start the background schedule tick."""
        if self._running:
            return

        self._running = True
        self._tick_task = asyncio.create_task(self._schedule_loop())
        logger.info("Schedule loop started")

    async def stop(self) -> None:
        """Stop the schedule tick; an in-flight tick is cancelled."""
        if not self._running:
            return

        self._running = False
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        logger.info("Schedule loop stopped")

    async def run(self) -> None:
        """Start the schedule loop and block until it is stopped."""
        await self.start()
        if self._tick_task:
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass

    async def _schedule_loop(self) -> None:
        """Fire schedule evaluation once per whole UTC minute."""
        interval = self.settings.scheduler.tick_interval_seconds

        while self._running:
            now = utcnow()
            minute = now.replace(second=0, microsecond=0)

            if minute != self._last_tick:
                self._last_tick = minute
                try:
                    runs = await self.handle_schedule_tick(minute)
                    if runs:
                        logger.info(f"Schedule tick {minute.isoformat()} started {len(runs)} run(s)")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Schedule tick failed: {e}", exc_info=True)

            # Wake up no later than the next minute boundary
            until_next_minute = 60 - now.second - now.microsecond / 1_000_000
            await asyncio.sleep(min(interval, until_next_minute))


async def run_scheduler(path: str | Path) -> None:
    """Entry point: serve schedule triggers for the definitions in ``path``."""
    settings = get_settings()
    configure_logging(settings)

    dispatcher = WorkflowDispatcher(settings=settings)
    for workflow in load_definitions(path):
        dispatcher.register_workflow(workflow)

    logger.info(f"Loaded {len(dispatcher.list_workflows())} workflow(s) from {path}")

    try:
        await dispatcher.run()
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
    finally:
        await dispatcher.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run schedule triggers for workflow definitions")
    parser.add_argument("definitions", help="JSON file with a list of workflow definitions")
    args = parser.parse_args()
    asyncio.run(run_scheduler(args.definitions))


if __name__ == "__main__":
    main()
