"""Trigger matching and cron evaluation."""

from workflow_automation.triggers.cron import (
    CronFields,
    get_next_cron_time,
    matches_cron,
    parse_cron_expression,
    parse_cron_field,
)
from workflow_automation.triggers.engine import TriggerEngine

__all__ = [
    "CronFields",
    "TriggerEngine",
    "get_next_cron_time",
    "matches_cron",
    "parse_cron_expression",
    "parse_cron_field",
]
