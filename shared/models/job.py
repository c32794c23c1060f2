"""Job model and job/worker option payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_EXPIRE_IN_SECONDS = 900

StepResults = Dict[str, Any]


class JobState(str, Enum):
    created = "created"
    retry = "retry"
    active = "active"
    completed = "completed"
    expired = "expired"
    cancelled = "cancelled"
    failed = "failed"


class Job(BaseModel):
    """A unit of work as owned by the server and pushed to workers."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str
    data: Any = None
    state: JobState = JobState.created
    retry_count: int = Field(default=0, alias="retryCount")
    priority: int = 0
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    failed_at: Optional[datetime] = Field(default=None, alias="failedAt")
    expire_in_seconds: Optional[float] = Field(default=None, alias="expireInSeconds")

    def deadline_seconds(self, default: float = DEFAULT_EXPIRE_IN_SECONDS) -> float:
        """Return the effective deadline; unset or zero falls back to ``default``."""

        return self.expire_in_seconds or default


class JobOptions(BaseModel):
    """Per-job options forwarded verbatim to the server."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    priority: Optional[int] = None
    start_after: Optional[Union[datetime, str, int]] = Field(default=None, alias="startAfter")
    expire_in_seconds: Optional[int] = Field(default=None, alias="expireInSeconds")
    expire_in_minutes: Optional[int] = Field(default=None, alias="expireInMinutes")
    expire_in_hours: Optional[int] = Field(default=None, alias="expireInHours")
    retry_limit: Optional[int] = Field(default=None, alias="retryLimit")
    retry_delay: Optional[int] = Field(default=None, alias="retryDelay")
    retry_backoff: Optional[bool] = Field(default=None, alias="retryBackoff")
    retention_seconds: Optional[int] = Field(default=None, alias="retentionSeconds")
    retention_minutes: Optional[int] = Field(default=None, alias="retentionMinutes")
    retention_hours: Optional[int] = Field(default=None, alias="retentionHours")
    retention_days: Optional[int] = Field(default=None, alias="retentionDays")
    singleton_key: Optional[str] = Field(default=None, alias="singletonKey")
    singleton_seconds: Optional[int] = Field(default=None, alias="singletonSeconds")
    singleton_minutes: Optional[int] = Field(default=None, alias="singletonMinutes")
    singleton_hours: Optional[int] = Field(default=None, alias="singletonHours")
    singleton_next_slot: Optional[bool] = Field(default=None, alias="singletonNextSlot")
    dead_letter: Optional[str] = Field(default=None, alias="deadLetter")
    # Asks the server to emit job_completed_<id>/job_failed_<id> notifications.
    await_: Optional[bool] = Field(default=None, alias="await")


class ScheduleOptions(JobOptions):
    key: Optional[str] = None
    tz: Optional[str] = None


class WorkOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    team_size: Optional[int] = Field(default=None, alias="teamSize")
    team_concurrency: Optional[int] = Field(default=None, alias="teamConcurrency")


class BatchJob(BaseModel):
    name: str
    data: Any = None
    options: Optional[JobOptions] = None


def dump_options(options: Optional[BaseModel | Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Serialise an options model (or plain mapping) for the wire."""

    if options is None:
        return None
    if isinstance(options, BaseModel):
        return options.model_dump(by_alias=True, exclude_none=True, mode="json")
    return dict(options)
