"""PlanLlama job-queue client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError

from planllama.config import ClientSettings
from planllama.dispatch import Correlator, Dispatcher
from planllama.errors import ConnectError
from planllama.events import EventEmitter
from planllama.execution import HandlerRunner, JobHandler, WorkerEngine
from planllama.network import Ack, BaseChannel, SocketChannel, TransportError
from planllama.workflow import StepSpec, WorkflowOrchestrator
from shared.models import BatchJob, Job, JobOptions, ScheduleOptions, TemporaryToken, WorkOptions
from shared.protocol import events

LOGGER = logging.getLogger(__name__)

TOKEN_REQUIRED_MESSAGE = "Customer token is required"
CONNECTION_TIMEOUT_MESSAGE = "Connection timeout"
CLIENT_STOPPED_MESSAGE = "Client stopped"

_FORWARDED_EVENTS = {
    events.JOB_RETRYING: "retrying",
    events.JOB_EXPIRED: "expired",
    events.JOB_CANCELLED: "cancelled",
}


class PlanLlama(EventEmitter):
    """Connects to the job server, submits jobs and serves registered handlers.

    Outward events: ``active``, ``completed``, ``failed`` for jobs run by this
    client; ``retrying``, ``expired``, ``cancelled`` forwarded from the
    server; ``error`` for channel errors.
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        *,
        server_url: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
        channel: Optional[BaseChannel] = None,
    ) -> None:
        super().__init__()
        overrides: Dict[str, Any] = {}
        if api_token:
            overrides["api_token"] = api_token
        if server_url:
            overrides["server_url"] = server_url
        if settings is None:
            settings = ClientSettings(**overrides)
        elif overrides:
            settings = ClientSettings.model_validate({**settings.model_dump(), **overrides})
        if not settings.api_token:
            raise ValueError(TOKEN_REQUIRED_MESSAGE)

        self._settings = settings
        self._channel = channel or SocketChannel(settings)
        self._started = False
        self._wired = False
        self._ready = asyncio.Event()

        runner = HandlerRunner(default_exec_mode=settings.handler_exec_mode)
        self._correlator = Correlator(self._channel)
        self._dispatcher = Dispatcher(
            self._channel,
            self._correlator,
            is_started=lambda: self.started,
            ack_timeout=settings.request_timeout_seconds,
        )
        self._engine = WorkerEngine(
            self._channel,
            self,
            default_expire_in_seconds=settings.default_expire_in_seconds,
            runner=runner,
        )
        self._workflows = WorkflowOrchestrator(self._engine, self._dispatcher, runner=runner)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def channel(self) -> BaseChannel:
        return self._channel

    @property
    def started(self) -> bool:
        return self._started and self._channel.connected

    # Lifecycle --------------------------------------------------------------
    async def start(self) -> None:
        """Connect and wait until the server announces ``client_ready``."""

        if self._started:
            return
        self._wire()
        self._ready.clear()
        LOGGER.info("Connecting to %s", self._settings.server_url)
        try:
            await asyncio.wait_for(self._connect_until_ready(), timeout=self._settings.connect_timeout_seconds)
        except asyncio.TimeoutError as exc:
            await self._channel.close()
            raise ConnectError(CONNECTION_TIMEOUT_MESSAGE) from exc
        except TransportError as exc:
            await self._channel.close()
            raise ConnectError(str(exc)) from exc
        self._started = True
        LOGGER.info("PlanLlama client started")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self._engine.stop()
        await self._workflows.stop()
        self._correlator.cancel_all(CLIENT_STOPPED_MESSAGE)
        await self._channel.close()
        LOGGER.info("PlanLlama client stopped")

    async def __aenter__(self) -> "PlanLlama":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # Jobs -------------------------------------------------------------------
    async def publish(self, name: str, data: Any = None, options: JobOptions | Dict[str, Any] | None = None) -> str:
        return await self._dispatcher.publish(name, data, options)

    async def request(self, name: str, data: Any = None, options: JobOptions | Dict[str, Any] | None = None) -> Any:
        return await self._dispatcher.request(name, data, options)

    async def schedule(
        self,
        name: str,
        cron_pattern: str,
        data: Any = None,
        options: ScheduleOptions | Dict[str, Any] | None = None,
    ) -> Optional[str]:
        return await self._dispatcher.schedule(name, cron_pattern, data, options)

    async def publish_batch(self, jobs: Iterable[BatchJob | Dict[str, Any]]) -> str:
        return await self._dispatcher.publish_batch(jobs)

    async def wait_for_batch(self, batch_id: str) -> None:
        await self._dispatcher.wait_for_batch(batch_id)

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._dispatcher.get_job(job_id)

    async def cancel(self, job_id: str) -> None:
        await self._dispatcher.cancel(job_id)

    async def get_queue_size(self, job_name: str) -> int:
        return await self._dispatcher.get_queue_size(job_name)

    async def get_temporary_token(self, duration_seconds: Optional[int] = None) -> TemporaryToken:
        return await self._dispatcher.get_temporary_token(duration_seconds)

    # Workers ----------------------------------------------------------------
    async def work(
        self,
        name: str,
        handler: Optional[JobHandler],
        options: WorkOptions | Dict[str, Any] | None = None,
        *,
        exec_mode: Optional[str] = None,
    ) -> None:
        """Serve jobs named ``name`` with ``handler``.

        Registration is sent immediately when connected and repeated on
        every ``client_ready``.
        """

        await self._engine.register(name, handler, options, exec_mode=exec_mode)

    async def workflow(self, name: str, steps: Mapping[str, StepSpec]) -> None:
        await self._workflows.define(name, steps)

    # Internals --------------------------------------------------------------
    def _wire(self) -> None:
        if self._wired:
            return
        self._wired = True
        self._engine.attach()
        self._channel.add_ready_hook(self._on_ready)
        for server_event, outward in _FORWARDED_EVENTS.items():
            self._channel.on(server_event, self._forwarder(outward))
        self._channel.on(events.ERROR, self._on_channel_error)

    async def _connect_until_ready(self) -> None:
        await self._channel.connect()
        await self._ready.wait()

    def _on_ready(self, initial: bool) -> None:
        if not initial:
            LOGGER.info("Server ready again after reconnect")
        self._ready.set()

    def _forwarder(self, outward: str):
        def _forward(data: Any, _ack: Optional[Ack] = None) -> None:
            try:
                job: Any = Job.model_validate(data)
            except ValidationError:
                LOGGER.warning("Forwarding unparsed %s notification: %s", outward, data)
                job = data
            self.emit(outward, job)

        return _forward

    def _on_channel_error(self, data: Any, _ack: Optional[Ack] = None) -> None:
        LOGGER.error("Channel error: %s", data)
        self.emit("error", data)
