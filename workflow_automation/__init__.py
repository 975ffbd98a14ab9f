"""
Workflow Automation Core

An embedded workflow orchestration core: trigger evaluation (events, cron
schedules, webhooks, manual invocations) and step-by-step execution of
declarative workflows with retries, idempotency, concurrency limits and an
audit trail.
"""

__version__ = "1.0.0"
