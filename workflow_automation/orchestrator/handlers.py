"""
Action handler registry and the default simulation handlers.

Handlers are the seam where real side effects (messages, HTTP calls,
data transforms) are plugged in. The defaults registered by
``create_default_handlers`` only simulate those effects.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Union

from workflow_automation.core.models import (
    ExecutionContext,
    HttpRequestAction,
    LoopAction,
    ParallelAction,
    SendMessageAction,
    TransformDataAction,
    WorkflowAction,
    WorkflowStep,
    generate_id,
    utcnow,
)
from workflow_automation.template.resolver import TemplateResolver

logger = logging.getLogger(__name__)

# (action, context, step) -> result; may be sync or async
ActionHandler = Callable[
    [WorkflowAction, ExecutionContext, WorkflowStep],
    Union[Any, Awaitable[Any]],
]


class ActionHandlerRegistry:
    """Maps action type strings to handler callables."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """Register a handler, replacing any existing one for the type."""
        if action_type in self._handlers:
            logger.debug(f"Replacing handler for action type '{action_type}'")
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    def unregister(self, action_type: str) -> bool:
        return self._handlers.pop(action_type, None) is not None

    def has(self, action_type: str) -> bool:
        return action_type in self._handlers

    def action_types(self) -> list[str]:
        return list(self._handlers)


def create_action_handler_registry() -> ActionHandlerRegistry:
    """Create an empty registry."""
    return ActionHandlerRegistry()


# ==================== Simulation handlers ====================


async def send_message_handler(
    action: SendMessageAction,
    context: ExecutionContext,
    step: WorkflowStep,
) -> dict[str, Any]:
    """Simulate posting a message; templates in channel and content are resolved."""
    resolver = TemplateResolver(context)
    channel_id = resolver.interpolate(action.channel_id)
    content = resolver.interpolate(action.content)

    logger.info(f"Simulated message to {channel_id} from step {step.id}")

    return {
        "message_id": generate_id("msg"),
        "channel_id": channel_id,
        "content": content,
        "sent_at": utcnow().isoformat(),
    }


async def http_request_handler(
    action: HttpRequestAction,
    context: ExecutionContext,
    step: WorkflowStep,
) -> dict[str, Any]:
    """Simulate an HTTP call without any network I/O."""
    url = TemplateResolver(context).interpolate(action.url)

    logger.info(f"Simulated {action.method} {url} from step {step.id}")

    return {
        "url": url,
        "method": action.method,
        "status": 200,
        "body": {"success": True},
    }


async def transform_data_handler(
    action: TransformDataAction,
    context: ExecutionContext,
    step: WorkflowStep,
) -> dict[str, Any]:
    value = TemplateResolver(context).lookup(action.input)
    return {"input": value, "transformed": value}


async def echo_action_handler(
    action: WorkflowAction,
    context: ExecutionContext,
    step: WorkflowStep,
) -> dict[str, Any]:
    return {"action": action.type, "success": True}


async def loop_handler(
    action: LoopAction,
    context: ExecutionContext,
    step: WorkflowStep,
) -> dict[str, Any]:
    """
    Walk a list from the context, exposing each item as a variable.

    Items beyond ``max_iterations`` are ignored. A missing or non-list
    collection yields zero iterations.
    """
    collection = TemplateResolver(context).lookup(action.collection)
    if not isinstance(collection, list):
        return {"iterations": 0, "results": []}

    results = []
    for index, item in enumerate(collection[: action.max_iterations]):
        context.variables[action.item_variable] = item
        context.variables[action.index_variable] = index
        results.append(item)

    return {"iterations": len(results), "results": results}


async def parallel_handler(
    action: ParallelAction,
    context: ExecutionContext,
    step: WorkflowStep,
) -> dict[str, Any]:
    """Report the branch count; branches are not executed."""
    return {
        "branches": len(action.branches),
        "wait_for_all": action.wait_for_all,
        "completed": True,
    }


def create_default_handlers() -> ActionHandlerRegistry:
    """
    Create a registry pre-populated with simulation handlers.

    Replace individual entries via ``register`` to wire real services.
    """
    registry = create_action_handler_registry()
    registry.register("send_message", send_message_handler)
    registry.register("http_request", http_request_handler)
    registry.register("transform_data", transform_data_handler)
    registry.register("channel_action", echo_action_handler)
    registry.register("user_action", echo_action_handler)
    registry.register("loop", loop_handler)
    registry.register("parallel", parallel_handler)
    return registry
