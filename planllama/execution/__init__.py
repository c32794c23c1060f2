"""Job execution: handler registry, runner and worker engine."""

from .engine import OutcomeGuard, WorkerEngine
from .registry import HandlerDescriptor, HandlerRegistry, JobHandler
from .runner import HandlerRunner

__all__ = [
    "HandlerDescriptor",
    "HandlerRegistry",
    "HandlerRunner",
    "JobHandler",
    "OutcomeGuard",
    "WorkerEngine",
]
