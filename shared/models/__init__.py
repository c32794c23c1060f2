from .job import (
    DEFAULT_EXPIRE_IN_SECONDS,
    BatchJob,
    Job,
    JobOptions,
    JobState,
    ScheduleOptions,
    StepResults,
    WorkOptions,
    dump_options,
)
from .messages import (
    BrowserTokenPayload,
    FetchStepResultsPayload,
    JobCompletedPayload,
    JobFailedNotice,
    JobIdPayload,
    JobStartedPayload,
    QueueSizePayload,
    RegisterWorkerPayload,
    ScheduleJobPayload,
    SendBatchPayload,
    SendJobPayload,
    ServerResponse,
    StoreStepResultPayload,
    TemporaryToken,
    WaitForBatchPayload,
    WorkAck,
)

__all__ = [
    "DEFAULT_EXPIRE_IN_SECONDS",
    "BatchJob",
    "Job",
    "JobOptions",
    "JobState",
    "ScheduleOptions",
    "StepResults",
    "WorkOptions",
    "dump_options",
    "BrowserTokenPayload",
    "FetchStepResultsPayload",
    "JobCompletedPayload",
    "JobFailedNotice",
    "JobIdPayload",
    "JobStartedPayload",
    "QueueSizePayload",
    "RegisterWorkerPayload",
    "ScheduleJobPayload",
    "SendBatchPayload",
    "SendJobPayload",
    "ServerResponse",
    "StoreStepResultPayload",
    "TemporaryToken",
    "WaitForBatchPayload",
    "WorkAck",
]
