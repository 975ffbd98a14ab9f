"""
Declarative condition evaluation.

Conditions are field/operator/value predicates evaluated against a flat
context mapping; a list of conditions is combined with AND semantics.
"""

import logging
import re
from numbers import Number
from typing import Any, Iterable, Mapping

from workflow_automation.core.models import ConditionOperator, TriggerCondition
from workflow_automation.template.resolver import get_nested_value

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _contains(container: Any, value: Any) -> bool:
    if isinstance(container, str):
        return isinstance(value, str) and value in container
    if isinstance(container, (list, tuple, set)):
        return value in container
    return False


def _compare(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    """Numeric comparison; anything non-numeric fails closed."""
    if not (_is_number(actual) and _is_number(expected)):
        return False

    if operator == ConditionOperator.GREATER_THAN:
        return actual > expected
    if operator == ConditionOperator.LESS_THAN:
        return actual < expected
    if operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return actual >= expected
    return actual <= expected


def evaluate_condition(condition: TriggerCondition, context: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against a context."""
    actual = get_nested_value(context, condition.field)
    expected = condition.value
    operator = condition.operator

    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if operator == ConditionOperator.CONTAINS:
        return _contains(actual, expected)
    if operator == ConditionOperator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if operator in (
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_THAN_OR_EQUAL,
        ConditionOperator.LESS_THAN_OR_EQUAL,
    ):
        return _compare(actual, expected, operator)
    if operator == ConditionOperator.IN:
        return isinstance(expected, (list, tuple, set)) and actual in expected
    if operator == ConditionOperator.NOT_IN:
        return isinstance(expected, (list, tuple, set)) and actual not in expected
    if operator == ConditionOperator.MATCHES_REGEX:
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        try:
            return re.search(expected, actual) is not None
        except re.error:
            logger.debug(f"Invalid regex in condition on '{condition.field}': {expected!r}")
            return False
    if operator == ConditionOperator.EXISTS:
        return actual is not None
    if operator == ConditionOperator.NOT_EXISTS:
        return actual is None

    return False


def evaluate_conditions(
    conditions: Iterable[TriggerCondition],
    context: Mapping[str, Any],
) -> bool:
    """AND over all conditions; an empty list is satisfied."""
    return all(evaluate_condition(condition, context) for condition in conditions)
