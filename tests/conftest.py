"""
Pytest fixtures and configuration for tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from workflow_automation.config import EngineSettings, Environment, Settings
from workflow_automation.core.models import WorkflowDefinition, WorkflowStep
from workflow_automation.orchestrator import (
    IdempotencyStore,
    WorkflowExecutionEngine,
    create_default_handlers,
)


class SleepRecorder:
    """Async sleep stand-in that records requested durations (ms)."""

    def __init__(self) -> None:
        self.calls: list[int] = []

    async def __call__(self, ms: int) -> None:
        self.calls.append(ms)


class FakeClock:
    """Controllable clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += timedelta(milliseconds=ms)


def make_step(step_id: str, action: dict[str, Any], **fields: Any) -> dict[str, Any]:
    """Build raw step data; ``fields`` are extra WorkflowStep fields."""
    return {"id": step_id, "name": step_id.upper(), "action": action, **fields}


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 2, 9, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_workflow() -> Callable[..., WorkflowDefinition]:
    """Factory for minimal valid workflows; keyword arguments override fields."""

    def factory(**overrides: Any) -> WorkflowDefinition:
        data: dict[str, Any] = {
            "id": "wf-1",
            "name": "Test Workflow",
            "trigger": {"type": "manual"},
            "steps": [
                make_step("s1", {"type": "set_variable", "variable_name": "greeting", "value": "hi"}),
            ],
        }
        data.update(overrides)
        return WorkflowDefinition.model_validate(data)

    return factory


@pytest.fixture
def engine(sleep_recorder: SleepRecorder, clock: FakeClock) -> WorkflowExecutionEngine:
    """Execution engine with default handlers, a no-op sleep and a fake clock."""
    return WorkflowExecutionEngine(
        action_handlers=create_default_handlers(),
        settings=EngineSettings(),
        sleep_fn=sleep_recorder,
        now_fn=clock,
        idempotency_store=IdempotencyStore(),
    )
