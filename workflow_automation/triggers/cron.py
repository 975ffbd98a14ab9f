"""
Five-field cron expression evaluation.

Fields are minute (0-59), hour (0-23), day of month (1-31), month (1-12)
and day of week (0-6, 0 = Sunday). Schedules are evaluated in UTC only:
the ``tz`` arguments are accepted for interface compatibility and ignored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

# Upper bound for get_next_cron_time scans
MAX_LOOKAHEAD = timedelta(days=365)

FIELD_RANGES = (
    (0, 59),  # minute
    (0, 23),  # hour
    (1, 31),  # day of month
    (1, 12),  # month
    (0, 6),   # day of week
)


@dataclass(frozen=True)
class CronFields:
    """Allowed values per field, each sorted ascending."""

    minute: list[int]
    hour: list[int]
    day_of_month: list[int]
    month: list[int]
    day_of_week: list[int]


def _to_int(token: str) -> Optional[int]:
    token = token.strip()
    if not (token.isascii() and token.isdigit()):
        return None
    return int(token)


def _parse_range(token: str, minimum: int, maximum: int) -> Optional[tuple[int, int]]:
    """Parse ``*``, ``n-m`` or ``n`` into an inclusive (start, end) pair."""
    if token == "*":
        return minimum, maximum
    if "-" in token:
        start_text, _, end_text = token.partition("-")
        start, end = _to_int(start_text), _to_int(end_text)
        if start is None or end is None:
            return None
        return start, end
    value = _to_int(token)
    if value is None:
        return None
    return value, value


def parse_cron_field(field: str, minimum: int, maximum: int) -> list[int]:
    """
    Expand one cron field into its sorted list of allowed values.

    Supports ``*``, comma lists, ``n-m`` ranges and ``base/step`` where
    base is ``*``, a range, or a bare start value running to ``maximum``.
    Tokens that are malformed or out of range are dropped, so a field may
    expand to an empty list.
    """
    values: set[int] = set()

    for part in field.split(","):
        part = part.strip()
        if not part:
            continue

        step = 1
        if "/" in part:
            base, _, step_text = part.partition("/")
            parsed_step = _to_int(step_text)
            if not parsed_step:
                continue
            step = parsed_step
            if base != "*" and "-" not in base:
                start = _to_int(base)
                if start is None:
                    continue
                bounds = (start, maximum)
            else:
                bounds = _parse_range(base, minimum, maximum)
        else:
            bounds = _parse_range(part, minimum, maximum)

        if bounds is None:
            continue

        start, end = bounds
        for value in range(start, end + 1, step):
            if minimum <= value <= maximum:
                values.add(value)

    return sorted(values)


def parse_cron_expression(expression: str) -> Optional[CronFields]:
    """Parse a 5-field expression; None if the shape is wrong or a field is empty."""
    parts = expression.split()
    if len(parts) != 5:
        return None

    expanded = []
    for part, (minimum, maximum) in zip(parts, FIELD_RANGES):
        values = parse_cron_field(part, minimum, maximum)
        if not values:
            return None
        expanded.append(values)

    return CronFields(*expanded)


def _as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _fields_match(fields: CronFields, moment: datetime) -> bool:
    # Python weekday() is Monday=0; cron is Sunday=0
    day_of_week = (moment.weekday() + 1) % 7
    return (
        moment.minute in fields.minute
        and moment.hour in fields.hour
        and moment.day in fields.day_of_month
        and moment.month in fields.month
        and day_of_week in fields.day_of_week
    )


def matches_cron(expression: str, moment: datetime, tz: str = "UTC") -> bool:
    """True if ``moment`` (taken in UTC) satisfies every field of ``expression``."""
    fields = parse_cron_expression(expression)
    if fields is None:
        return False
    return _fields_match(fields, _as_utc(moment))


def get_next_cron_time(
    expression: str,
    after: datetime,
    tz: str = "UTC",
) -> Optional[datetime]:
    """
    First matching whole minute strictly after ``after``.

    Scans minute by minute up to a year ahead; returns None if the
    expression is invalid or never matches in that window.
    """
    fields = parse_cron_expression(expression)
    if fields is None:
        return None

    candidate = _as_utc(after).replace(second=0, microsecond=0) + timedelta(minutes=1)
    limit = candidate + MAX_LOOKAHEAD

    while candidate <= limit:
        if _fields_match(fields, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    logger.debug(f"No match for cron '{expression}' within {MAX_LOOKAHEAD.days} days")
    return None
