"""Step declarations for workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple, Union

from planllama.errors import WorkflowDefinitionError
from shared.models import StepResults

StepFunction = Callable[[StepResults], Any]
# A step is either a function or [dep, ..., function].
StepSpec = Union[StepFunction, Sequence[Union[str, StepFunction]]]

INVALID_STEP_MESSAGE = "Invalid step definition"
STEP_SHAPE_MESSAGE = "Step must be a function or an array ending with a function"


@dataclass(frozen=True)
class StepDefinition:
    name: str
    function: StepFunction
    dependencies: Tuple[str, ...] = field(default_factory=tuple)


def normalise_step(name: str, spec: StepSpec) -> StepDefinition:
    if callable(spec):
        return StepDefinition(name=name, function=spec)
    if not isinstance(spec, (list, tuple)):
        raise WorkflowDefinitionError(INVALID_STEP_MESSAGE)
    if not spec or not callable(spec[-1]):
        raise WorkflowDefinitionError(STEP_SHAPE_MESSAGE)
    dependencies: List[str] = []
    for dependency in spec[:-1]:
        if not isinstance(dependency, str):
            raise WorkflowDefinitionError(INVALID_STEP_MESSAGE)
        dependencies.append(dependency)
    return StepDefinition(name=name, function=spec[-1], dependencies=tuple(dependencies))


def normalise_steps(steps: Mapping[str, StepSpec]) -> Dict[str, StepDefinition]:
    """Normalise a step mapping, keeping declaration order."""

    if not isinstance(steps, Mapping):
        raise WorkflowDefinitionError(INVALID_STEP_MESSAGE)
    return {name: normalise_step(name, spec) for name, spec in steps.items()}
