"""Payload and acknowledgement models for client/server messages."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .job import BatchJob, Job


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def compact(cls, **fields: Any):
        """Build the payload, leaving ``None`` fields unset so they stay off the wire."""

        return cls(**{name: value for name, value in fields.items() if value is not None})


class SendJobPayload(_Payload):
    name: str
    data: Any = None
    options: Optional[Dict[str, Any]] = None


class ScheduleJobPayload(_Payload):
    name: str
    cron_pattern: str = Field(alias="cronPattern")
    data: Any = None
    options: Optional[Dict[str, Any]] = None


class RegisterWorkerPayload(_Payload):
    job_name: str = Field(alias="jobName")
    options: Optional[Dict[str, Any]] = None


class JobStartedPayload(_Payload):
    job_name: str = Field(alias="jobName")
    job_id: str = Field(alias="jobId")


class JobCompletedPayload(_Payload):
    job_name: str = Field(alias="jobName")
    job_id: str = Field(alias="jobId")
    result: Any = None


class FetchStepResultsPayload(_Payload):
    job_id: str = Field(alias="jobId")


class StoreStepResultPayload(_Payload):
    job_id: str = Field(alias="jobId")
    step_name: str = Field(alias="stepName")
    result: Any = None


class SendBatchPayload(_Payload):
    jobs: List[BatchJob]


class WaitForBatchPayload(_Payload):
    batch_id: str = Field(alias="batchId")


class JobIdPayload(_Payload):
    job_id: str = Field(alias="jobId")


class QueueSizePayload(_Payload):
    job_name: str = Field(alias="jobName")


class BrowserTokenPayload(_Payload):
    duration_seconds: Optional[int] = Field(default=None, alias="durationSeconds")


class ServerResponse(_Payload):
    """Acknowledgement returned by the server for client requests."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[str] = Field(default=None, alias="jobId")
    schedule_id: Optional[str] = Field(default=None, alias="scheduleId")
    batch_id: Optional[str] = Field(default=None, alias="batchId")
    job: Optional[Job] = None
    queue_size: Optional[int] = Field(default=None, alias="queueSize")
    step_results: Optional[Dict[str, Any]] = Field(default=None, alias="stepResults")
    token: Optional[str] = None
    expires_at: Optional[str] = Field(default=None, alias="expiresAt")
    duration_seconds: Optional[int] = Field(default=None, alias="durationSeconds")
    result: Any = None


class WorkAck(_Payload):
    """Outcome report sent back through the work_request acknowledgement."""

    status: Literal["ok", "error"]
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: Any) -> "WorkAck":
        return cls(status="ok", result=result)

    @classmethod
    def failed(cls, message: str) -> "WorkAck":
        return cls(status="error", error=message)

    def to_wire(self) -> Dict[str, Any]:
        if self.status == "ok":
            return {"status": "ok", "result": self.result}
        return {"status": "error", "error": self.error}


class JobFailedNotice(_Payload):
    model_config = ConfigDict(extra="allow")

    error: Optional[str] = None


class TemporaryToken(_Payload):
    token: str
    expires_at: str = Field(alias="expiresAt")
    duration_seconds: int = Field(alias="durationSeconds")
