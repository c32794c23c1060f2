"""Match per-job completion/failure notifications to waiting callers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from planllama.errors import JobFailedError
from planllama.network import Ack, BaseChannel
from shared.models import JobFailedNotice
from shared.protocol import events

LOGGER = logging.getLogger(__name__)


@dataclass
class PendingCall:
    job_id: str
    future: asyncio.Future[Any]
    on_completed: Any
    on_failed: Any


def _failure_message(data: Any) -> Optional[str]:
    try:
        return JobFailedNotice.model_validate(data).error
    except ValidationError:
        LOGGER.debug("Unparsed failure notification: %s", data)
        return None


class Correlator:
    """Tracks ``job_id -> PendingCall`` for jobs published with ``await``."""

    def __init__(self, channel: BaseChannel) -> None:
        self._channel = channel
        self._pending: Dict[str, PendingCall] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def is_pending(self, job_id: str) -> bool:
        return job_id in self._pending

    def watch(self, job_id: str) -> asyncio.Future[Any]:
        """Subscribe to the notifications of ``job_id`` and return its future.

        Must run synchronously from the publish acknowledgement so that a
        notification routed right after it is not missed.
        """

        existing = self._pending.get(job_id)
        if existing is not None:
            return existing.future

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _on_completed(data: Any, _ack: Optional[Ack] = None) -> None:
            self._settle(job_id, result=data)

        def _on_failed(data: Any, _ack: Optional[Ack] = None) -> None:
            self._settle(job_id, error=JobFailedError(_failure_message(data), job_id=job_id))

        pending = PendingCall(job_id, future, _on_completed, _on_failed)
        self._pending[job_id] = pending
        self._channel.once(events.completed_for(job_id), _on_completed)
        self._channel.once(events.failed_for(job_id), _on_failed)
        future.add_done_callback(lambda fut: self._discard(job_id, fut))
        LOGGER.debug("Awaiting outcome of job %s", job_id)
        return future

    def cancel_all(self, reason: str) -> None:
        """Reject every pending call with ``JobFailedError(reason)``."""

        for job_id in list(self._pending):
            self._settle(job_id, error=JobFailedError(reason, job_id=job_id))

    def _settle(self, job_id: str, *, result: Any = None, error: Optional[BaseException] = None) -> None:
        pending = self._pending.pop(job_id, None)
        if pending is None:
            return
        self._unsubscribe(pending)
        if pending.future.done():
            return
        if error is not None:
            LOGGER.debug("Job %s failed: %s", job_id, error)
            pending.future.set_exception(error)
        else:
            LOGGER.debug("Job %s completed", job_id)
            pending.future.set_result(result)

    def _discard(self, job_id: str, future: asyncio.Future[Any]) -> None:
        # Caller gave up on the future (cancelled); stop listening for it.
        pending = self._pending.get(job_id)
        if pending is None or pending.future is not future:
            return
        del self._pending[job_id]
        self._unsubscribe(pending)

    def _unsubscribe(self, pending: PendingCall) -> None:
        self._channel.off(events.completed_for(pending.job_id), pending.on_completed)
        self._channel.off(events.failed_for(pending.job_id), pending.on_failed)
