"""Worker engine: runs pushed jobs under a deadline and reports outcomes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional

from pydantic import ValidationError

from planllama.errors import HandlerRequiredError, JobTimeoutError, error_message
from planllama.events import EventEmitter
from planllama.network import Ack, BaseChannel
from shared.models import (
    DEFAULT_EXPIRE_IN_SECONDS,
    Job,
    JobCompletedPayload,
    JobStartedPayload,
    RegisterWorkerPayload,
    WorkAck,
    WorkOptions,
    dump_options,
)
from shared.protocol import events

from .registry import HandlerDescriptor, HandlerRegistry, JobHandler
from .runner import HandlerRunner

LOGGER = logging.getLogger(__name__)

JOB_TIMED_OUT = "Job timed out"


@dataclass
class OutcomeGuard:
    """Lets exactly one outcome through the work_request acknowledgement."""

    job_id: Optional[str]
    ack: Optional[Ack]
    settled: bool = False

    async def settle(self, outcome: WorkAck) -> bool:
        if self.settled:
            LOGGER.warning("Dropping second outcome for job %s: %s", self.job_id, outcome.status)
            return False
        self.settled = True
        if self.ack is None:
            LOGGER.debug("Work request for job %s did not ask for an acknowledgement", self.job_id)
            return True
        await self.ack(outcome.to_wire())
        return True


def _format_seconds(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


class WorkerEngine:
    """Receives ``work_request`` pushes and executes the registered handler.

    Lifecycle per work item: ``job_started`` + outward ``active``, then the
    handler races the job deadline.  The winner decides the single
    acknowledgement; a handler that loses the race keeps running and its
    late outcome is only logged.
    """

    def __init__(
        self,
        channel: BaseChannel,
        emitter: EventEmitter,
        *,
        default_expire_in_seconds: float = DEFAULT_EXPIRE_IN_SECONDS,
        runner: Optional[HandlerRunner] = None,
        registry: Optional[HandlerRegistry] = None,
    ) -> None:
        self._channel = channel
        self._emitter = emitter
        self._default_expire = default_expire_in_seconds
        self._runner = runner or HandlerRunner()
        self._registry = registry or HandlerRegistry()
        self._work_tasks: set[asyncio.Task[None]] = set()
        self._orphaned: set[asyncio.Task[Any]] = set()
        self._attached = False

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    def attach(self) -> None:
        """Subscribe to work pushes and re-register on every client_ready."""

        if self._attached:
            return
        self._attached = True
        self._channel.on(events.WORK_REQUEST, self.handle_work_request)
        self._channel.add_ready_hook(self._on_ready)

    async def register(
        self,
        name: str,
        handler: Optional[JobHandler],
        options: WorkOptions | Dict[str, Any] | None = None,
        *,
        exec_mode: Optional[str] = None,
    ) -> HandlerDescriptor:
        if handler is None or not callable(handler):
            raise HandlerRequiredError()
        descriptor = self._registry.register(name, handler, dump_options(options), exec_mode=exec_mode)
        if self._channel.connected:
            await self._announce(descriptor)
        return descriptor

    async def reassert(self) -> None:
        """Re-send ``register_worker`` for every handler in registration order."""

        for descriptor in self._registry.list_handlers():
            await self._announce(descriptor)

    async def stop(self) -> None:
        tasks = list(self._work_tasks) + list(self._orphaned)
        self._work_tasks.clear()
        self._orphaned.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def handle_work_request(self, data: Any, ack: Optional[Ack] = None) -> None:
        task = asyncio.create_task(self._process(data, ack), name="worker-job")
        self._work_tasks.add(task)

        def _finalise(completed: asyncio.Task[None]) -> None:
            self._work_tasks.discard(completed)
            if completed.cancelled():
                return
            exc = completed.exception()
            if exc is not None:
                LOGGER.error("Work item failed unexpectedly: %s", exc, exc_info=exc)

        task.add_done_callback(_finalise)

    async def _on_ready(self, initial: bool) -> None:
        if len(self._registry):
            LOGGER.info("Registering %s handler(s) (initial=%s)", len(self._registry), initial)
        await self.reassert()

    async def _announce(self, descriptor: HandlerDescriptor) -> None:
        payload = RegisterWorkerPayload.compact(job_name=descriptor.name, options=descriptor.options)
        await self._channel.emit(events.REGISTER_WORKER, payload)

    async def _process(self, data: Any, ack: Optional[Ack]) -> None:
        job_id = data.get("id") if isinstance(data, dict) else None
        guard = OutcomeGuard(job_id=job_id, ack=ack)
        try:
            job = Job.model_validate(data)
        except ValidationError as exc:
            LOGGER.warning("Rejecting malformed work request: %s", exc)
            await guard.settle(WorkAck.failed("Invalid job payload"))
            return

        descriptor = self._registry.resolve(job.name)
        if descriptor is None:
            LOGGER.warning("No handler registered for job %s id=%s", job.name, job.id)
            await guard.settle(WorkAck.failed(f"No handler registered for job: {job.name}"))
            return

        try:
            await self._run(job, descriptor, guard)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Reporting outcome of job %s failed", job.id)
            if not guard.settled:
                await guard.settle(WorkAck.failed(error_message(exc)))

    async def _run(self, job: Job, descriptor: HandlerDescriptor, guard: OutcomeGuard) -> None:
        await self._channel.emit(events.JOB_STARTED, JobStartedPayload(job_name=job.name, job_id=job.id))
        self._emitter.emit("active", job)

        deadline = job.deadline_seconds(self._default_expire)
        LOGGER.debug("Running job %s id=%s with deadline %ss", job.name, job.id, deadline)
        handler_task = asyncio.create_task(
            self._runner.run(descriptor.handler, job, exec_mode=descriptor.exec_mode),
            name=f"job-{job.id}",
        )
        try:
            done, _ = await asyncio.wait({handler_task}, timeout=deadline)
        except asyncio.CancelledError:
            handler_task.cancel()
            raise

        if not done:
            self._orphaned.add(handler_task)
            handler_task.add_done_callback(partial(self._discard_late_outcome, job))
            LOGGER.warning("Job %s id=%s exceeded its %ss deadline", job.name, job.id, _format_seconds(deadline))
            await guard.settle(WorkAck.failed(f"Job '{job.name}' timed out after {_format_seconds(deadline)}s"))
            self._emitter.emit("failed", job, JobTimeoutError(JOB_TIMED_OUT))
            return

        exc = handler_task.exception()
        if exc is not None:
            LOGGER.info("Job %s id=%s failed: %s", job.name, job.id, exc)
            await guard.settle(WorkAck.failed(error_message(exc)))
            self._emitter.emit("failed", job, exc)
            return

        result = handler_task.result()
        try:
            await self._channel.emit(
                events.JOB_COMPLETED,
                JobCompletedPayload(job_name=job.name, job_id=job.id, result=result),
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not report completion of job %s id=%s: %s", job.name, job.id, exc)
        self._emitter.emit("completed", job, result)
        await guard.settle(WorkAck.ok(result))

    def _discard_late_outcome(self, job: Job, task: asyncio.Task[Any]) -> None:
        self._orphaned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Discarding late failure of job %s id=%s: %s", job.name, job.id, exc)
        else:
            LOGGER.warning("Discarding late result of job %s id=%s", job.name, job.id)
