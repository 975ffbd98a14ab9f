"""
Unit tests for trigger evaluation.
"""

from datetime import datetime, timezone

import pytest

from workflow_automation.core.models import TriggerType
from workflow_automation.triggers import TriggerEngine

UTC = timezone.utc


@pytest.fixture
def trigger_engine() -> TriggerEngine:
    return TriggerEngine()


class TestEventTriggers:
    """Tests for event trigger matching."""

    def test_matching_event_type(self, trigger_engine, make_workflow):
        """Test a workflow matches its event type."""
        workflow = make_workflow(trigger={"type": "event", "event_type": "message.created"})
        trigger_engine.register_workflow(workflow)

        matches = trigger_engine.evaluate_event("message.created", {"channel_id": "ch-1"})

        assert len(matches) == 1
        assert matches[0].workflow.id == workflow.id
        assert matches[0].trigger_info.type == TriggerType.EVENT
        assert matches[0].trigger_info.event_type == "message.created"
        assert matches[0].trigger_info.payload == {"channel_id": "ch-1"}

    def test_different_event_type(self, trigger_engine, make_workflow):
        """Test other event types do not match."""
        trigger_engine.register_workflow(
            make_workflow(trigger={"type": "event", "event_type": "message.created"})
        )

        assert trigger_engine.evaluate_event("message.deleted", {}) == []

    def test_channel_filter(self, trigger_engine, make_workflow):
        """Test channel allow-list."""
        trigger_engine.register_workflow(
            make_workflow(
                trigger={"type": "event", "event_type": "message.created", "channel_ids": ["ch-1"]}
            )
        )

        assert len(trigger_engine.evaluate_event("message.created", {"channel_id": "ch-1"})) == 1
        assert trigger_engine.evaluate_event("message.created", {"channel_id": "ch-2"}) == []
        assert trigger_engine.evaluate_event("message.created", {}) == []

    def test_user_filter(self, trigger_engine, make_workflow):
        """Test user allow-list and user id propagation."""
        trigger_engine.register_workflow(
            make_workflow(
                trigger={"type": "event", "event_type": "message.created", "user_ids": ["user-1"]}
            )
        )

        matches = trigger_engine.evaluate_event("message.created", {"user_id": "user-1"})
        assert len(matches) == 1
        assert matches[0].trigger_info.user_id == "user-1"
        assert trigger_engine.evaluate_event("message.created", {"user_id": "user-2"}) == []

    def test_conditions(self, trigger_engine, make_workflow):
        """Test declarative conditions against event data."""
        trigger_engine.register_workflow(
            make_workflow(
                trigger={
                    "type": "event",
                    "event_type": "message.created",
                    "conditions": [{"field": "priority", "operator": "equals", "value": "high"}],
                }
            )
        )

        assert len(trigger_engine.evaluate_event("message.created", {"priority": "high"})) == 1
        assert trigger_engine.evaluate_event("message.created", {"priority": "low"}) == []

    def test_disabled_workflow_skipped(self, trigger_engine, make_workflow):
        """Test disabled workflows never match."""
        trigger_engine.register_workflow(
            make_workflow(enabled=False, trigger={"type": "event", "event_type": "message.created"})
        )

        assert trigger_engine.evaluate_event("message.created", {}) == []

    def test_multiple_matches_in_registration_order(self, trigger_engine, make_workflow):
        """Test every matching workflow is returned in registration order."""
        for workflow_id in ("wf-b", "wf-a"):
            trigger_engine.register_workflow(
                make_workflow(id=workflow_id, trigger={"type": "event", "event_type": "message.created"})
            )

        matches = trigger_engine.evaluate_event("message.created", {})

        assert [m.workflow.id for m in matches] == ["wf-b", "wf-a"]

    def test_non_event_workflow_ignored(self, trigger_engine, make_workflow):
        """Test workflows with other trigger kinds are not event candidates."""
        trigger_engine.register_workflow(make_workflow(trigger={"type": "manual"}))

        assert trigger_engine.evaluate_event("message.created", {}) == []


class TestScheduleTriggers:
    """Tests for schedule trigger matching."""

    def test_cron_match(self, trigger_engine, make_workflow):
        """Test matching at the scheduled minute only."""
        trigger_engine.register_workflow(
            make_workflow(trigger={"type": "schedule", "cron_expression": "30 14 * * *"})
        )

        tick = datetime(2026, 2, 9, 14, 30, tzinfo=UTC)
        matches = trigger_engine.evaluate_schedule(tick)

        assert len(matches) == 1
        assert matches[0].trigger_info.type == TriggerType.SCHEDULE
        assert matches[0].trigger_info.scheduled_time == tick
        assert trigger_engine.evaluate_schedule(datetime(2026, 2, 9, 14, 31, tzinfo=UTC)) == []

    def test_start_date(self, trigger_engine, make_workflow):
        """Test ticks before the start date are ignored."""
        trigger_engine.register_workflow(
            make_workflow(
                trigger={
                    "type": "schedule",
                    "cron_expression": "0 * * * *",
                    "start_date": "2026-03-01T00:00:00Z",
                }
            )
        )

        assert trigger_engine.evaluate_schedule(datetime(2026, 2, 15, 12, 0, tzinfo=UTC)) == []
        assert len(trigger_engine.evaluate_schedule(datetime(2026, 3, 15, 12, 0, tzinfo=UTC))) == 1

    def test_end_date(self, trigger_engine, make_workflow):
        """Test ticks after the end date are ignored."""
        trigger_engine.register_workflow(
            make_workflow(
                trigger={
                    "type": "schedule",
                    "cron_expression": "0 * * * *",
                    "end_date": "2026-01-01T00:00:00Z",
                }
            )
        )

        assert trigger_engine.evaluate_schedule(datetime(2026, 2, 9, 12, 0, tzinfo=UTC)) == []

    def test_disabled_schedule(self, trigger_engine, make_workflow):
        """Test disabled scheduled workflows never fire."""
        trigger_engine.register_workflow(
            make_workflow(enabled=False, trigger={"type": "schedule", "cron_expression": "* * * * *"})
        )

        assert trigger_engine.evaluate_schedule(datetime(2026, 2, 9, 12, 0, tzinfo=UTC)) == []


class TestWebhookTriggers:
    """Tests for webhook trigger matching."""

    def test_allowed_method(self, trigger_engine, make_workflow):
        """Test a POST to a POST webhook matches and carries the body."""
        workflow = make_workflow(trigger={"type": "webhook", "methods": ["POST"]})
        trigger_engine.register_workflow(workflow)

        match = trigger_engine.evaluate_webhook(
            workflow.id, "POST", {"data": "test"}, {"content-type": "application/json"}
        )

        assert match is not None
        assert match.trigger_info.type == TriggerType.WEBHOOK
        assert match.trigger_info.payload == {"data": "test"}

    def test_method_case_insensitive(self, trigger_engine, make_workflow):
        """Test methods are compared case-insensitively."""
        workflow = make_workflow(trigger={"type": "webhook", "methods": ["post"]})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_webhook(workflow.id, "Post", {}, {}) is not None

    def test_wrong_method(self, trigger_engine, make_workflow):
        """Test methods outside the allow-list are rejected."""
        workflow = make_workflow(trigger={"type": "webhook", "methods": ["POST"]})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_webhook(workflow.id, "GET", {}, {}) is None

    def test_content_type(self, trigger_engine, make_workflow):
        """Test content type check ignores parameters and header case."""
        workflow = make_workflow(
            trigger={"type": "webhook", "content_type": "application/json"}
        )
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_webhook(
            workflow.id, "POST", {}, {"Content-Type": "application/json; charset=utf-8"}
        ) is not None
        assert trigger_engine.evaluate_webhook(
            workflow.id, "POST", {}, {"Content-Type": "text/plain"}
        ) is None
        assert trigger_engine.evaluate_webhook(workflow.id, "POST", {}, {}) is None

    def test_conditions(self, trigger_engine, make_workflow):
        """Test conditions are evaluated against the body."""
        workflow = make_workflow(
            trigger={
                "type": "webhook",
                "conditions": [{"field": "action", "operator": "equals", "value": "deploy"}],
            }
        )
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_webhook(workflow.id, "POST", {"action": "deploy"}, {}) is not None
        assert trigger_engine.evaluate_webhook(workflow.id, "POST", {"action": "test"}, {}) is None

    def test_unknown_workflow(self, trigger_engine):
        """Test unknown workflow ids yield None."""
        assert trigger_engine.evaluate_webhook("unknown", "POST", {}, {}) is None

    def test_wrong_trigger_type(self, trigger_engine, make_workflow):
        """Test non-webhook workflows are not webhook targets."""
        workflow = make_workflow(trigger={"type": "manual"})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_webhook(workflow.id, "POST", {}, {}) is None

    def test_disabled(self, trigger_engine, make_workflow):
        """Test disabled webhook workflows are rejected."""
        workflow = make_workflow(enabled=False, trigger={"type": "webhook"})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_webhook(workflow.id, "POST", {}, {}) is None


class TestManualTriggers:
    """Tests for manual trigger authorization."""

    def test_allowed_user(self, trigger_engine, make_workflow):
        """Test user allow-list."""
        workflow = make_workflow(trigger={"type": "manual", "allowed_user_ids": ["user-1"]})
        trigger_engine.register_workflow(workflow)

        match = trigger_engine.evaluate_manual(workflow.id, "user-1", [], {"x": 1})

        assert match is not None
        assert match.trigger_info.user_id == "user-1"
        assert match.trigger_info.payload == {"x": 1}
        assert trigger_engine.evaluate_manual(workflow.id, "user-2", [], {}) is None

    def test_allowed_role(self, trigger_engine, make_workflow):
        """Test role allow-list needs a shared role."""
        workflow = make_workflow(trigger={"type": "manual", "allowed_roles": ["admin"]})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_manual(workflow.id, "u-1", ["member", "admin"], {}) is not None
        assert trigger_engine.evaluate_manual(workflow.id, "u-2", ["member"], {}) is None

    def test_unrestricted(self, trigger_engine, make_workflow):
        """Test anyone may run an unrestricted manual workflow."""
        workflow = make_workflow(trigger={"type": "manual"})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_manual(workflow.id, "anyone", [], {}) is not None

    def test_conditions_on_input(self, trigger_engine, make_workflow):
        """Test conditions are evaluated against the input data."""
        workflow = make_workflow(
            trigger={
                "type": "manual",
                "conditions": [{"field": "confirm", "operator": "equals", "value": True}],
            }
        )
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.evaluate_manual(workflow.id, "u", [], {"confirm": True}) is not None
        assert trigger_engine.evaluate_manual(workflow.id, "u", [], {}) is None


class TestRegistration:
    """Tests for workflow registration."""

    def test_unregister(self, trigger_engine, make_workflow):
        """Test unregistered workflows stop matching."""
        workflow = make_workflow(trigger={"type": "event", "event_type": "message.created"})
        trigger_engine.register_workflow(workflow)

        assert trigger_engine.unregister_workflow(workflow.id)
        assert not trigger_engine.unregister_workflow(workflow.id)
        assert trigger_engine.evaluate_event("message.created", {}) == []

    def test_register_replaces_same_id(self, trigger_engine, make_workflow):
        """Test registering an id again replaces the definition."""
        trigger_engine.register_workflow(make_workflow(name="First"))
        trigger_engine.register_workflow(make_workflow(name="Second"))

        workflows = trigger_engine.get_registered_workflows()
        assert len(workflows) == 1
        assert workflows[0].name == "Second"

    def test_list_and_clear(self, trigger_engine, make_workflow):
        """Test listing and clearing registrations."""
        trigger_engine.register_workflow(make_workflow(id="wf-1"))
        trigger_engine.register_workflow(make_workflow(id="wf-2"))
        assert len(trigger_engine.get_registered_workflows()) == 2

        trigger_engine.clear()

        assert trigger_engine.get_registered_workflows() == []
