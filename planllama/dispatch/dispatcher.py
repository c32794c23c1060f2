"""Client-to-server operations acknowledged over the channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from planllama.errors import NotStartedError, PlanLlamaError
from planllama.network import BaseChannel
from shared.models import (
    BatchJob,
    BrowserTokenPayload,
    FetchStepResultsPayload,
    Job,
    JobIdPayload,
    JobOptions,
    QueueSizePayload,
    ScheduleJobPayload,
    ScheduleOptions,
    SendBatchPayload,
    SendJobPayload,
    StepResults,
    StoreStepResultPayload,
    TemporaryToken,
    WaitForBatchPayload,
    dump_options,
)
from shared.protocol import events

from .correlator import Correlator
from .responses import expect, parse_response

LOGGER = logging.getLogger(__name__)

Options = JobOptions | Dict[str, Any] | None


class Dispatcher:
    """Sends jobs and queries to the server and interprets acknowledgements.

    Every operation requires a started client; ``NotStartedError`` is raised
    before anything is sent otherwise.
    """

    def __init__(
        self,
        channel: BaseChannel,
        correlator: Correlator,
        *,
        is_started: Callable[[], bool],
        ack_timeout: Optional[float] = None,
    ) -> None:
        self._channel = channel
        self._correlator = correlator
        self._is_started = is_started
        self._ack_timeout = ack_timeout

    def _ensure_started(self) -> None:
        if not self._is_started():
            raise NotStartedError()

    async def _call(self, event: str, payload: Any) -> Any:
        try:
            return await self._channel.call(event, payload, timeout=self._ack_timeout)
        except asyncio.TimeoutError as exc:
            raise PlanLlamaError(
                f"No acknowledgement for {event} within {self._ack_timeout}s",
                code="ack_timeout",
            ) from exc

    # Jobs -------------------------------------------------------------------
    async def publish(self, name: str, data: Any = None, options: Options = None) -> str:
        """Submit a job and return the server-assigned job id."""

        self._ensure_started()
        payload = SendJobPayload.compact(name=name, data=data, options=dump_options(options))
        response = expect(await self._call(events.SEND_JOB, payload), "job_id")
        LOGGER.debug("Published job %s id=%s", name, response.job_id)
        return response.job_id  # type: ignore[return-value]

    async def request(self, name: str, data: Any = None, options: Options = None) -> Any:
        """Submit a job and wait for its result.

        The job is sent with ``await`` set so the server emits the per-job
        completion notification.  Correlation is registered inside the
        acknowledgement callback, before any later frame is routed.
        """

        self._ensure_started()
        wire_options = dump_options(options) or {}
        wire_options["await"] = True
        payload = SendJobPayload.compact(name=name, data=data, options=wire_options)

        loop = asyncio.get_running_loop()
        acknowledged: asyncio.Future[asyncio.Future[Any]] = loop.create_future()

        def _on_ack(raw: Any) -> None:
            if acknowledged.done():
                return
            try:
                response = expect(raw, "job_id")
            except PlanLlamaError as exc:
                acknowledged.set_exception(exc)
                return
            acknowledged.set_result(self._correlator.watch(response.job_id))  # type: ignore[arg-type]

        ack_id = await self._channel.emit(events.SEND_JOB, payload, callback=_on_ack)
        try:
            if self._ack_timeout:
                outcome = await asyncio.wait_for(acknowledged, timeout=self._ack_timeout)
            else:
                outcome = await acknowledged
        except asyncio.TimeoutError as exc:
            self._channel.discard_ack(ack_id)
            raise PlanLlamaError(
                f"No acknowledgement for {events.SEND_JOB} within {self._ack_timeout}s",
                code="ack_timeout",
            ) from exc
        return await outcome

    async def schedule(
        self,
        name: str,
        cron_pattern: str,
        data: Any = None,
        options: ScheduleOptions | Dict[str, Any] | None = None,
    ) -> Optional[str]:
        """Register a recurring job; returns the schedule id when the server sends one."""

        self._ensure_started()
        payload = ScheduleJobPayload.compact(
            name=name,
            cron_pattern=cron_pattern,
            data=data,
            options=dump_options(options),
        )
        response = expect(await self._call(events.SCHEDULE_JOB, payload))
        return response.schedule_id

    async def publish_batch(self, jobs: Iterable[BatchJob | Dict[str, Any]]) -> str:
        """Submit several jobs at once and return the batch id."""

        self._ensure_started()
        batch: List[BatchJob] = [
            job if isinstance(job, BatchJob) else BatchJob.model_validate(job) for job in jobs
        ]
        response = expect(await self._call(events.SEND_BATCH, SendBatchPayload(jobs=batch)), "batch_id")
        return response.batch_id  # type: ignore[return-value]

    async def wait_for_batch(self, batch_id: str) -> None:
        """Block until the server reports every job of the batch as finished."""

        self._ensure_started()
        parse_response(await self._call(events.WAIT_FOR_BATCH, WaitForBatchPayload(batch_id=batch_id)))

    async def get_job(self, job_id: str) -> Optional[Job]:
        self._ensure_started()
        response = expect(await self._call(events.GET_JOB, JobIdPayload(job_id=job_id)))
        return response.job

    async def cancel(self, job_id: str) -> None:
        self._ensure_started()
        parse_response(await self._call(events.CANCEL_JOB, JobIdPayload(job_id=job_id)))

    async def get_queue_size(self, job_name: str) -> int:
        self._ensure_started()
        response = expect(await self._call(events.GET_QUEUE_SIZE, QueueSizePayload(job_name=job_name)))
        return response.queue_size or 0

    async def get_temporary_token(self, duration_seconds: Optional[int] = None) -> TemporaryToken:
        """Ask for a short-lived token usable from a browser session."""

        self._ensure_started()
        payload = BrowserTokenPayload.compact(duration_seconds=duration_seconds or None)
        response = expect(
            await self._call(events.REQUEST_BROWSER_TOKEN, payload),
            "token",
            "expires_at",
            "duration_seconds",
        )
        return TemporaryToken(
            token=response.token,
            expires_at=response.expires_at,
            duration_seconds=response.duration_seconds,
        )

    # Workflow persistence ---------------------------------------------------
    async def fetch_step_results(self, job_id: str) -> StepResults:
        """Return the step results already persisted for a workflow run."""

        self._ensure_started()
        LOGGER.debug("Fetching step results for job %s", job_id)
        response = expect(
            await self._call(events.FETCH_STEP_RESULTS, FetchStepResultsPayload(job_id=job_id)),
            "step_results",
        )
        return dict(response.step_results or {})

    async def store_step_result(self, job_id: str, step_name: str, result: Any) -> None:
        self._ensure_started()
        LOGGER.debug("Storing result of step %s for job %s", step_name, job_id)
        payload = StoreStepResultPayload(job_id=job_id, step_name=step_name, result=_plain(result))
        expect(await self._call(events.STORE_STEP_RESULT, payload))


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    return value
