"""Configuration management."""

from workflow_automation.config.logging_setup import configure_logging
from workflow_automation.config.settings import (
    EngineSettings,
    Environment,
    IdempotencySettings,
    SchedulerSettings,
    Settings,
    get_settings,
)

__all__ = [
    "EngineSettings",
    "Environment",
    "IdempotencySettings",
    "SchedulerSettings",
    "Settings",
    "configure_logging",
    "get_settings",
]
