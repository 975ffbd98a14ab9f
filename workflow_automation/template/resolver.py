"""
Sandboxed template resolution engine.

Resolves {{ path.to.value }} syntax against a run's merged context safely
without eval/exec.
"""

import json
import re
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from workflow_automation.core.models import ExecutionContext


# Pattern to match {{ reference }}
TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


def get_nested_value(obj: Any, path: str) -> Any:
    """
    Navigate a dotted path through nested data structures.

    Only dict keys and list indices are followed; attribute access is never
    used. Any miss returns None.

    Examples:
        get_nested_value({"user": {"name": "Alice"}}, "user.name") -> "Alice"
        get_nested_value({"items": [1, 2]}, "items.1") -> 2
    """
    current = obj

    for key in path.split("."):
        if current is None:
            return None

        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, list) and key.isascii() and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None

    return current


def _stringify(value: Any) -> str:
    """Convert a resolved value to its embedded string form."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate_template(template: str, context: Mapping[str, Any]) -> str:
    """Replace every {{ path }} placeholder with the resolved value's string form."""
    return TEMPLATE_PATTERN.sub(
        lambda match: _stringify(get_nested_value(context, match.group(1).strip())),
        template,
    )


def build_evaluation_context(context: "ExecutionContext") -> Mapping[str, Any]:
    """
    Merge a run's context into one read-only lookup mapping.

    Precedence on key collision: step outputs > variables > trigger data >
    the ``inputs`` namespace.
    """
    merged: dict[str, Any] = {"inputs": context.inputs}
    merged.update(context.trigger_data)
    merged.update(context.variables)
    merged.update(context.step_outputs)
    return MappingProxyType(merged)


class TemplateResolver:
    """
    Resolves template expressions against a run's merged context.

    Supports:
    - {{ name }} - top-level trigger data, variable or step output
    - {{ step_output.nested.path }} - nested values
    - {{ inputs.param_name }} - workflow input parameters
    - {{ items.0.id }} - list indices

    Security:
    - No eval/exec
    - Path traversal only through dict keys and list indices
    """

    def __init__(
        self,
        context: "ExecutionContext",
        extra: Optional[Mapping[str, Any]] = None,
    ):
        """
        Initialize resolver.

        Args:
            context: The run's execution context
            extra: Additional top-level names (e.g. ``run_id``); these win
                over every context source
        """
        merged = build_evaluation_context(context)
        if extra:
            merged = MappingProxyType({**merged, **extra})
        self.values = merged

    def lookup(self, path: str) -> Any:
        """Resolve a dotted path to its raw value."""
        return get_nested_value(self.values, path)

    def interpolate(self, template: str) -> str:
        """Resolve all placeholders in a string."""
        return interpolate_template(template, self.values)

    def resolve_mapping(self, mapping: Mapping[str, str]) -> dict[str, Any]:
        """Resolve an input mapping of ``name -> context path`` into values."""
        return {name: self.lookup(path) for name, path in mapping.items()}
