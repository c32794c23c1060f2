"""Python client for the PlanLlama job-queue service."""

from .client import PlanLlama
from .config import ClientSettings, get_settings
from .errors import (
    ConnectError,
    CyclicDependencyError,
    HandlerRequiredError,
    InvalidResponseError,
    JobFailedError,
    JobTimeoutError,
    NotStartedError,
    PlanLlamaError,
    ServerError,
    UndefinedStepError,
    WorkflowDefinitionError,
)

__all__ = [
    "ClientSettings",
    "ConnectError",
    "CyclicDependencyError",
    "HandlerRequiredError",
    "InvalidResponseError",
    "JobFailedError",
    "JobTimeoutError",
    "NotStartedError",
    "PlanLlama",
    "PlanLlamaError",
    "ServerError",
    "UndefinedStepError",
    "WorkflowDefinitionError",
    "get_settings",
]
