"""
Step dependency graph ordering and validation.

Implements execution ordering and cycle detection using Kahn's algorithm.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from workflow_automation.core.models import WorkflowStep

logger = logging.getLogger(__name__)


def resolve_execution_order(steps: Sequence[WorkflowStep]) -> list[str]:
    """
    Compute a deterministic step execution order.

    Kahn's algorithm over ``depends_on`` edges; ties among ready steps are
    broken by declaration order. Dependencies on unknown step ids are
    ignored for ordering. Steps left unresolved by a cycle are appended in
    declaration order rather than rejected.
    """
    graph: dict[str, list[str]] = {step.id: [] for step in steps}
    in_degree: dict[str, int] = {step.id: 0 for step in steps}

    for step in steps:
        for dep_id in step.depends_on or []:
            if dep_id in graph:
                graph[dep_id].append(step.id)
                in_degree[step.id] += 1

    queue = deque(step_id for step_id, degree in in_degree.items() if degree == 0)
    order: list[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)

        for neighbor in graph[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(order) < len(graph):
        resolved = set(order)
        unresolved = [step.id for step in steps if step.id not in resolved]
        logger.warning(
            f"Circular dependency among steps {unresolved}; "
            f"appending them in declaration order"
        )
        order.extend(unresolved)

    return order


@dataclass
class ValidationIssue:
    """Represents a single validation error."""

    code: str
    message: str
    step_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Result of step graph validation."""

    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)

    # Populated on successful validation
    topological_order: list[str] = field(default_factory=list)

    def add_error(
        self,
        code: str,
        message: str,
        step_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Add a validation error."""
        self.errors.append(ValidationIssue(code, message, step_id, details))
        self.is_valid = False


class WorkflowValidationError(Exception):
    """Raised when a workflow's step graph fails validation."""

    def __init__(self, workflow_id: str, errors: list[ValidationIssue]):
        self.workflow_id = workflow_id
        self.errors = errors
        summary = "; ".join(f"{e.code}: {e.message}" for e in errors)
        super().__init__(f"Workflow '{workflow_id}' failed validation: {summary}")


class StepGraphValidator:
    """
    Validates a workflow's step dependency graph.

    Checks for duplicate ids, dangling dependencies, self-loops and cycles.
    """

    def __init__(self, steps: Sequence[WorkflowStep]):
        self.steps = list(steps)
        self._adjacency_list: dict[str, list[str]] = defaultdict(list)
        self._step_ids: list[str] = [step.id for step in self.steps]

        for step in self.steps:
            for dep in step.depends_on or []:
                # dep -> step (forward edge)
                self._adjacency_list[dep].append(step.id)

    def validate(self) -> ValidationResult:
        """
        Perform full validation of the step graph.

        Returns:
            ValidationResult with errors and, when valid, the execution order
        """
        result = ValidationResult(is_valid=True)

        self._validate_unique_ids(result)
        self._validate_dependency_references(result)
        self._validate_no_self_loops(result)
        self._detect_cycles(result)

        if result.is_valid:
            result.topological_order = resolve_execution_order(self.steps)

        return result

    def _validate_unique_ids(self, result: ValidationResult) -> None:
        seen: set[str] = set()
        for step_id in self._step_ids:
            if step_id in seen:
                result.add_error(
                    code="DUPLICATE_STEP_ID",
                    message=f"Step id '{step_id}' is declared more than once",
                    step_id=step_id,
                )
            seen.add(step_id)

    def _validate_dependency_references(self, result: ValidationResult) -> None:
        """Validate that all dependency references point to existing steps."""
        step_ids = set(self._step_ids)

        for step in self.steps:
            for dep in step.depends_on or []:
                if dep not in step_ids:
                    result.add_error(
                        code="INVALID_DEPENDENCY",
                        message=f"Step '{step.id}' references non-existent dependency '{dep}'",
                        step_id=step.id,
                        dependency=dep,
                    )

    def _validate_no_self_loops(self, result: ValidationResult) -> None:
        """Check for self-referential dependencies."""
        for step in self.steps:
            if step.id in (step.depends_on or []):
                result.add_error(
                    code="SELF_LOOP",
                    message=f"Step '{step.id}' has a self-referential dependency",
                    step_id=step.id,
                )

    def _detect_cycles(self, result: ValidationResult) -> None:
        """Detect cycles with Kahn's algorithm; report one cycle path."""
        # Skip if there are already errors
        if not result.is_valid:
            return

        in_degree = {step.id: len(step.depends_on or []) for step in self.steps}
        queue = deque(step_id for step_id, degree in in_degree.items() if degree == 0)
        visited = 0

        while queue:
            step_id = queue.popleft()
            visited += 1
            for neighbor in self._adjacency_list[step_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if visited != len(in_degree):
            remaining = [step_id for step_id, degree in in_degree.items() if degree > 0]
            cycle = self._find_cycle(remaining)
            result.add_error(
                code="CYCLE_DETECTED",
                message=f"Workflow contains circular dependencies involving steps: {cycle}",
                cycle_steps=cycle,
            )

    def _find_cycle(self, candidates: list[str]) -> list[str]:
        """Find one cycle among the candidate steps using DFS."""
        visited: set[str] = set()
        rec_stack: set[str] = set()
        cycle_path: list[str] = []

        def dfs(node: str, path: list[str]) -> bool:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for neighbor in self._adjacency_list.get(node, []):
                if neighbor not in visited:
                    if dfs(neighbor, path):
                        return True
                elif neighbor in rec_stack:
                    cycle_path.extend(path[path.index(neighbor):])
                    return True

            path.pop()
            rec_stack.remove(node)
            return False

        for node in candidates:
            if node not in visited and dfs(node, []):
                break

        return cycle_path or candidates


def validate_workflow_steps(steps: Sequence[WorkflowStep]) -> ValidationResult:
    """Convenience wrapper around StepGraphValidator."""
    return StepGraphValidator(steps).validate()
