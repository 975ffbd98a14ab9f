"""
Unit tests for the action handler registry and simulation handlers.
"""

import pytest

from workflow_automation.core.models import ExecutionContext, WorkflowStep
from workflow_automation.orchestrator.handlers import (
    ActionHandlerRegistry,
    create_action_handler_registry,
    create_default_handlers,
)


def make_step(action: dict) -> WorkflowStep:
    return WorkflowStep(id="s1", name="Step", action=action)


async def invoke(registry: ActionHandlerRegistry, step: WorkflowStep, context: ExecutionContext):
    handler = registry.get(step.action.type)
    assert handler is not None
    return await handler(step.action, context, step)


class TestActionHandlerRegistry:
    """Tests for registry operations."""

    def test_register_and_get(self):
        """Test handlers are found by exact type string."""
        registry = create_action_handler_registry()

        async def handler(action, context, step):
            return "ok"

        registry.register("custom", handler)

        assert registry.get("custom") is handler
        assert registry.get("Custom") is None
        assert registry.has("custom")
        assert registry.action_types() == ["custom"]

    def test_register_replaces(self):
        """Test registering a type again replaces its handler."""
        registry = ActionHandlerRegistry()
        registry.register("x", lambda a, c, s: 1)
        replacement = lambda a, c, s: 2  # noqa: E731
        registry.register("x", replacement)

        assert registry.get("x") is replacement

    def test_unregister(self):
        """Test removal."""
        registry = ActionHandlerRegistry()
        registry.register("x", lambda a, c, s: 1)

        assert registry.unregister("x")
        assert not registry.unregister("x")
        assert registry.get("x") is None

    def test_default_types(self):
        """Test the default registry covers the simulated action types."""
        registry = create_default_handlers()

        assert set(registry.action_types()) == {
            "send_message",
            "http_request",
            "transform_data",
            "channel_action",
            "user_action",
            "loop",
            "parallel",
        }
        assert not registry.has("delay")


class TestDefaultHandlers:
    """Tests for the simulation handlers."""

    @pytest.mark.asyncio
    async def test_send_message_interpolates(self):
        """Test channel and content templates are resolved."""
        context = ExecutionContext(
            trigger_data={"channel_id": "general"},
            inputs={"name": "Ada"},
        )
        step = make_step(
            {"type": "send_message", "channel_id": "{{ channel_id }}", "content": "Hi {{ inputs.name }}"}
        )

        result = await invoke(create_default_handlers(), step, context)

        assert result["channel_id"] == "general"
        assert result["content"] == "Hi Ada"
        assert result["message_id"].startswith("msg_")
        assert "sent_at" in result

    @pytest.mark.asyncio
    async def test_http_request_is_simulated(self):
        """Test HTTP calls return a canned success response."""
        context = ExecutionContext(variables={"host": "api.example.com"})
        step = make_step({"type": "http_request", "url": "https://{{ host }}/v1", "method": "POST"})

        result = await invoke(create_default_handlers(), step, context)

        assert result == {
            "url": "https://api.example.com/v1",
            "method": "POST",
            "status": 200,
            "body": {"success": True},
        }

    @pytest.mark.asyncio
    async def test_transform_data(self):
        """Test the transform reads its input path."""
        context = ExecutionContext(step_outputs={"fetch": {"rows": [1, 2]}})
        step = make_step({"type": "transform_data", "input": "fetch.rows"})

        result = await invoke(create_default_handlers(), step, context)

        assert result == {"input": [1, 2], "transformed": [1, 2]}

    @pytest.mark.asyncio
    async def test_channel_action_reports_type(self):
        """Test an author-supplied action field does not override the reported type."""
        step = make_step({"type": "channel_action", "action": "archive", "channel_id": "c1"})

        result = await invoke(create_default_handlers(), step, ExecutionContext())

        assert result == {"action": "channel_action", "success": True}

    @pytest.mark.asyncio
    async def test_user_action_reports_type(self):
        """Test user actions report their own type."""
        step = make_step({"type": "user_action", "user_id": "u1"})

        result = await invoke(create_default_handlers(), step, ExecutionContext())

        assert result == {"action": "user_action", "success": True}

    @pytest.mark.asyncio
    async def test_loop_sets_variables(self):
        """Test the loop exposes item and index variables, capped by max_iterations."""
        context = ExecutionContext(trigger_data={"users": ["a", "b", "c"]})
        step = make_step({"type": "loop", "collection": "users", "max_iterations": 2})

        result = await invoke(create_default_handlers(), step, context)

        assert result["iterations"] == 2
        assert result["results"] == ["a", "b"]
        assert context.variables["item"] == "b"
        assert context.variables["index"] == 1

    @pytest.mark.asyncio
    async def test_loop_over_non_list(self):
        """Test a missing collection yields no iterations."""
        step = make_step({"type": "loop", "collection": "missing"})

        result = await invoke(create_default_handlers(), step, ExecutionContext())

        assert result == {"iterations": 0, "results": []}

    @pytest.mark.asyncio
    async def test_parallel_reports_branch_count(self):
        """Test parallel reports how many branches it declares."""
        step = make_step({"type": "parallel", "branches": [["a"], ["b"]], "wait_for_all": False})

        result = await invoke(create_default_handlers(), step, ExecutionContext())

        assert result == {"branches": 2, "wait_for_all": False, "completed": True}
