"""Message names exchanged over the client/server channel."""

from __future__ import annotations

# client -> server
SEND_JOB = "send_job"
SCHEDULE_JOB = "schedule_job"
REGISTER_WORKER = "register_worker"
JOB_STARTED = "job_started"
JOB_COMPLETED = "job_completed"
SEND_BATCH = "send_batch"
WAIT_FOR_BATCH = "wait_for_batch"
GET_JOB = "get_job"
CANCEL_JOB = "cancel_job"
GET_QUEUE_SIZE = "get_queue_size"
REQUEST_BROWSER_TOKEN = "request_browser_token"
FETCH_STEP_RESULTS = "fetch_step_results"
STORE_STEP_RESULT = "store_step_result"

# server -> client
CLIENT_READY = "client_ready"
WORK_REQUEST = "work_request"
JOB_RETRYING = "job_retrying"
JOB_EXPIRED = "job_expired"
JOB_CANCELLED = "job_cancelled"
ERROR = "error"

_COMPLETED_PREFIX = "job_completed_"
_FAILED_PREFIX = "job_failed_"


def completed_for(job_id: str) -> str:
    """Per-job completion notification name."""

    return f"{_COMPLETED_PREFIX}{job_id}"


def failed_for(job_id: str) -> str:
    """Per-job failure notification name."""

    return f"{_FAILED_PREFIX}{job_id}"
