"""Workflow run execution and trigger dispatch."""

from workflow_automation.orchestrator.dispatcher import (
    WorkflowDispatcher,
    load_definitions,
    run_scheduler,
)
from workflow_automation.orchestrator.engine import WorkflowExecutionEngine
from workflow_automation.orchestrator.handlers import (
    ActionHandler,
    ActionHandlerRegistry,
    create_action_handler_registry,
    create_default_handlers,
)
from workflow_automation.orchestrator.idempotency import IdempotencyStore

__all__ = [
    "ActionHandler",
    "ActionHandlerRegistry",
    "IdempotencyStore",
    "WorkflowDispatcher",
    "WorkflowExecutionEngine",
    "create_action_handler_registry",
    "create_default_handlers",
    "load_definitions",
    "run_scheduler",
]
