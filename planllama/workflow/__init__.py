"""Multi-step workflows over dependent jobs."""

from .graph import build_graph, next_frontier, validate_dependencies
from .orchestrator import WorkflowOrchestrator, WorkflowRun, step_job_name
from .steps import StepDefinition, StepFunction, StepSpec, normalise_step, normalise_steps

__all__ = [
    "StepDefinition",
    "StepFunction",
    "StepSpec",
    "WorkflowOrchestrator",
    "WorkflowRun",
    "build_graph",
    "next_frontier",
    "normalise_step",
    "normalise_steps",
    "step_job_name",
    "validate_dependencies",
]
