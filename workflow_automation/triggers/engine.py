"""
Trigger evaluation against registered workflow definitions.

The trigger engine only matches; starting runs for the matches is the
caller's job (see ``WorkflowDispatcher``).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from workflow_automation.core.conditions import evaluate_conditions
from workflow_automation.core.models import (
    EventTrigger,
    ManualTrigger,
    RunTriggerInfo,
    ScheduleTrigger,
    TriggerMatch,
    TriggerType,
    WebhookTrigger,
    WorkflowDefinition,
)
from workflow_automation.triggers.cron import matches_cron

logger = logging.getLogger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


class TriggerEngine:
    """
    Holds registered workflows and matches incoming triggers against them.

    Registration checks identity only; graph validation happens upstream.
    Event and schedule evaluation return matches in registration order.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}

    # ==================== Registration ====================

    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        """Register (or replace) a workflow under its id."""
        self._workflows[workflow.id] = workflow
        logger.debug(f"Registered workflow {workflow.id} ({workflow.trigger.type} trigger)")

    def unregister_workflow(self, workflow_id: str) -> bool:
        """Remove a workflow; returns whether it was registered."""
        removed = self._workflows.pop(workflow_id, None) is not None
        if removed:
            logger.debug(f"Unregistered workflow {workflow_id}")
        return removed

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def get_registered_workflows(self) -> list[WorkflowDefinition]:
        return list(self._workflows.values())

    def clear(self) -> None:
        self._workflows.clear()

    # ==================== Evaluation ====================

    def evaluate_event(
        self,
        event_type: str,
        event_data: Mapping[str, Any],
    ) -> list[TriggerMatch]:
        """
        Match an application event against event-triggered workflows.

        Channel and user allow-lists are checked against the ``channel_id``
        and ``user_id`` keys of the event data; an unset list means no
        restriction.
        """
        matches: list[TriggerMatch] = []

        for workflow in self._workflows.values():
            trigger = workflow.trigger
            if not workflow.enabled or not isinstance(trigger, EventTrigger):
                continue
            if trigger.event_type != event_type:
                continue
            if trigger.channel_ids and event_data.get("channel_id") not in trigger.channel_ids:
                continue
            if trigger.user_ids and event_data.get("user_id") not in trigger.user_ids:
                continue
            if not evaluate_conditions(trigger.conditions, event_data):
                continue

            matches.append(
                TriggerMatch(
                    workflow=workflow,
                    trigger_info=RunTriggerInfo(
                        type=TriggerType.EVENT,
                        event_type=event_type,
                        event_data=dict(event_data),
                        user_id=event_data.get("user_id"),
                    ),
                )
            )

        logger.debug(f"Event '{event_type}' matched {len(matches)} workflow(s)")
        return matches

    def evaluate_schedule(self, current_time: datetime) -> list[TriggerMatch]:
        """Match a clock tick against schedule-triggered workflows (UTC)."""
        now = _as_utc(current_time)
        matches: list[TriggerMatch] = []

        for workflow in self._workflows.values():
            trigger = workflow.trigger
            if not workflow.enabled or not isinstance(trigger, ScheduleTrigger):
                continue
            if trigger.start_date and now < _as_utc(trigger.start_date):
                continue
            if trigger.end_date and now > _as_utc(trigger.end_date):
                continue
            if not matches_cron(trigger.cron_expression, now, trigger.timezone):
                continue

            matches.append(
                TriggerMatch(
                    workflow=workflow,
                    trigger_info=RunTriggerInfo(
                        type=TriggerType.SCHEDULE,
                        scheduled_time=now,
                    ),
                )
            )

        return matches

    def evaluate_webhook(
        self,
        workflow_id: str,
        method: str,
        body: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> Optional[TriggerMatch]:
        """Match an inbound webhook call addressed to one workflow."""
        workflow = self._workflows.get(workflow_id)
        if workflow is None or not workflow.enabled:
            return None

        trigger = workflow.trigger
        if not isinstance(trigger, WebhookTrigger):
            return None
        if method.upper() not in trigger.methods:
            logger.debug(f"Webhook for {workflow_id} rejected: method {method} not allowed")
            return None

        if trigger.content_type:
            received = _header(headers, "content-type")
            if received is None or _media_type(received) != _media_type(trigger.content_type):
                logger.debug(f"Webhook for {workflow_id} rejected: content type {received!r}")
                return None

        if not evaluate_conditions(trigger.conditions, body):
            return None

        return TriggerMatch(
            workflow=workflow,
            trigger_info=RunTriggerInfo(
                type=TriggerType.WEBHOOK,
                webhook_data=dict(body),
            ),
        )

    def evaluate_manual(
        self,
        workflow_id: str,
        user_id: str,
        user_roles: Sequence[str],
        input_data: Mapping[str, Any],
    ) -> Optional[TriggerMatch]:
        """Check whether a user may start a manually triggered workflow."""
        workflow = self._workflows.get(workflow_id)
        if workflow is None or not workflow.enabled:
            return None

        trigger = workflow.trigger
        if not isinstance(trigger, ManualTrigger):
            return None
        if trigger.allowed_user_ids and user_id not in trigger.allowed_user_ids:
            return None
        if trigger.allowed_roles and not set(trigger.allowed_roles) & set(user_roles):
            return None
        if not evaluate_conditions(trigger.conditions, input_data):
            return None

        return TriggerMatch(
            workflow=workflow,
            trigger_info=RunTriggerInfo(
                type=TriggerType.MANUAL,
                user_id=user_id,
                event_data=dict(input_data),
            ),
        )
