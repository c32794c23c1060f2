"""Error types raised by the client."""

from __future__ import annotations

from typing import Any, Optional

NOT_STARTED_MESSAGE = "PlanLlama not started. Call start() first."
INVALID_RESPONSE_MESSAGE = "Invalid response from server"
JOB_FAILED_MESSAGE = "Job failed"
HANDLER_REQUIRED_MESSAGE = "Handler function is required"
RECURSIVE_DEPENDENCY_MESSAGE = "workflow cannot execute steps due to a recursive dependency"


class PlanLlamaError(RuntimeError):
    """Base class for client errors; ``code`` is stable for matching."""

    code = "error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class NotStartedError(PlanLlamaError):
    """Raised when an operation needs a connected channel."""

    code = "not_started"

    def __init__(self, message: str = NOT_STARTED_MESSAGE) -> None:
        super().__init__(message)


class ConnectError(PlanLlamaError):
    """Raised when start() cannot reach a ready server."""

    code = "connect_failed"


class ServerError(PlanLlamaError):
    """The server answered with ``status: "error"``."""

    code = "server_error"


class InvalidResponseError(PlanLlamaError):
    """The acknowledgement did not have the expected shape."""

    code = "invalid_response"

    def __init__(self, message: str = INVALID_RESPONSE_MESSAGE, *, response: Any = None) -> None:
        super().__init__(message)
        self.response = response


class JobFailedError(PlanLlamaError):
    """A job awaited through request() failed remotely."""

    code = "job_failed"

    def __init__(self, message: Optional[str] = None, *, job_id: Optional[str] = None) -> None:
        super().__init__(message or JOB_FAILED_MESSAGE)
        self.job_id = job_id


class JobTimeoutError(PlanLlamaError):
    """A pushed job exceeded its deadline."""

    code = "job_timeout"


class WorkflowDefinitionError(PlanLlamaError):
    """Invalid workflow, step or handler definition."""

    code = "definition_error"


class HandlerRequiredError(WorkflowDefinitionError):
    code = "handler_required"

    def __init__(self, message: str = HANDLER_REQUIRED_MESSAGE) -> None:
        super().__init__(message)


class UndefinedStepError(WorkflowDefinitionError):
    code = "undefined_step"

    def __init__(self, step: str, dependency: str) -> None:
        super().__init__(f"Step '{step}' depends on undefined step '{dependency}'")
        self.step = step
        self.dependency = dependency


class CyclicDependencyError(WorkflowDefinitionError):
    code = "recursive_dependency"

    def __init__(self, stuck: Optional[list[str]] = None) -> None:
        super().__init__(RECURSIVE_DEPENDENCY_MESSAGE)
        self.stuck = list(stuck or [])


def error_message(error: BaseException | Any) -> str:
    """Normalise a handler failure into the message reported to the server."""

    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)
