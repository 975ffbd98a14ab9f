"""Template interpolation and context lookup."""

from workflow_automation.template.resolver import (
    TemplateResolver,
    build_evaluation_context,
    get_nested_value,
    interpolate_template,
)

__all__ = [
    "TemplateResolver",
    "build_evaluation_context",
    "get_nested_value",
    "interpolate_template",
]
