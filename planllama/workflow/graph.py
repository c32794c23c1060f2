"""Dependency checks and frontier selection for workflow steps."""

from __future__ import annotations

from collections import deque
from typing import Collection, Dict, List, Mapping

from planllama.errors import CyclicDependencyError, UndefinedStepError

from .steps import StepDefinition


def build_graph(definitions: Mapping[str, StepDefinition]) -> tuple[Dict[str, List[str]], Dict[str, int]]:
    """Return ``(dependents, in_degree)`` for the declared steps.

    Raises ``UndefinedStepError`` for a dependency that names no step.
    """

    dependents: Dict[str, List[str]] = {name: [] for name in definitions}
    in_degree: Dict[str, int] = {name: 0 for name in definitions}
    for name, definition in definitions.items():
        in_degree[name] = len(definition.dependencies)
        for dependency in definition.dependencies:
            if dependency not in definitions:
                raise UndefinedStepError(name, dependency)
            dependents[dependency].append(name)
    return dependents, in_degree


def validate_dependencies(definitions: Mapping[str, StepDefinition]) -> List[str]:
    """Kahn's algorithm over the step graph; returns one valid execution order.

    Raises ``CyclicDependencyError`` when some steps can never become ready.
    """

    dependents, in_degree = build_graph(definitions)
    in_degree = dict(in_degree)
    queue = deque(name for name, degree in in_degree.items() if degree == 0)
    order: List[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(order) != len(definitions):
        stuck = [name for name, degree in in_degree.items() if degree > 0]
        raise CyclicDependencyError(stuck)
    return order


def next_frontier(
    definitions: Mapping[str, StepDefinition],
    remaining: Collection[str],
    resolved: Collection[str],
) -> List[str]:
    """Remaining steps whose dependencies all have results, in declaration order."""

    return [
        name
        for name, definition in definitions.items()
        if name in remaining and all(dependency in resolved for dependency in definition.dependencies)
    ]
