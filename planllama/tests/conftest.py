import asyncio
from itertools import count
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from planllama.config import ClientSettings
from planllama.network import BaseChannel
from shared.protocol import Frame, events

Responder = Callable[[Any], Any]
FollowUp = Callable[[Any, Any], List[Tuple[str, Any]]]


class FakeChannel(BaseChannel):
    """In-memory channel standing in for the job server.

    ``responders[event]`` answers acknowledged events on the next loop
    iteration; ``follow_ups[event]`` returns extra frames routed right after
    that acknowledgement, in the same callback.
    """

    def __init__(self, *, connected: bool = True, announce_ready: bool = True) -> None:
        super().__init__()
        self._connected = connected
        self.announce_ready = announce_ready
        self.sent: List[Dict[str, Any]] = []
        self.responders: Dict[str, Responder] = {}
        self.follow_ups: Dict[str, FollowUp] = {}
        self.closed = False
        self._server_ack_ids = count(10_000)

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        self.closed = False
        if self.announce_ready:
            asyncio.get_running_loop().call_soon(self.push, events.CLIENT_READY)

    async def close(self) -> None:
        self._connected = False
        self.closed = True
        self.fail_pending_acks("Connection lost")
        await self.cancel_tasks()

    async def _send_frame(self, frame: Dict[str, Any]) -> None:
        self.sent.append(frame)
        if frame["kind"] != "event" or "ackId" not in frame:
            return
        responder = self.responders.get(frame["event"])
        if responder is None:
            return
        data = frame.get("data")
        response = responder(data)
        follow_up = self.follow_ups.get(frame["event"])
        asyncio.get_running_loop().call_soon(self._answer, frame["ackId"], response, data, follow_up)

    def _answer(self, ack_id: int, response: Any, data: Any, follow_up: Optional[FollowUp]) -> None:
        self.route_frame(Frame(kind="ack", ack_id=ack_id, data=response))
        if follow_up is not None:
            for event, payload in follow_up(data, response):
                self.push(event, payload)

    # Server side helpers ----------------------------------------------------
    def push(self, event: str, data: Any = None) -> None:
        self.route_frame(Frame(kind="event", event=event, data=data))

    def push_request(self, event: str, data: Any = None) -> int:
        ack_id = next(self._server_ack_ids)
        self.route_frame(Frame(kind="event", event=event, data=data, ack_id=ack_id))
        return ack_id

    def acks_for(self, ack_id: int) -> List[Any]:
        return [frame.get("data") for frame in self.sent if frame["kind"] == "ack" and frame.get("ackId") == ack_id]

    async def wait_for_ack(self, ack_id: int, timeout: float = 2.0) -> Any:
        async def _poll() -> Any:
            while True:
                acks = self.acks_for(ack_id)
                if acks:
                    return acks[0]
                await asyncio.sleep(0.001)

        return await asyncio.wait_for(_poll(), timeout=timeout)

    def events_named(self, name: str) -> List[Any]:
        return [frame.get("data") for frame in self.sent if frame["kind"] == "event" and frame.get("event") == name]

    def event_names(self) -> List[str]:
        return [frame["event"] for frame in self.sent if frame["kind"] == "event"]


class LoopbackServer:
    """Queues every ``send_job`` back to the same channel as a work push.

    The work acknowledgement decides which per-job notification is sent,
    mirroring how the server reports awaited jobs.
    """

    def __init__(self, channel: FakeChannel, stored: Optional[Dict[str, Any]] = None) -> None:
        self.channel = channel
        self.stored: Dict[str, Any] = dict(stored or {})
        self.stored_calls: List[Dict[str, Any]] = []
        self.dispatched: List[Tuple[str, Any]] = []
        self.started: List[str] = []
        self.finished: List[str] = []
        self._ids = count(1)
        self._tasks: set = set()
        channel.responders[events.SEND_JOB] = self._on_send_job
        channel.responders[events.FETCH_STEP_RESULTS] = lambda _data: {
            "status": "ok",
            "stepResults": dict(self.stored),
        }
        channel.responders[events.STORE_STEP_RESULT] = self._on_store
        channel.on(events.JOB_STARTED, lambda data, _ack: self.started.append(data["jobName"]))

    def _on_send_job(self, data: Dict[str, Any]) -> Dict[str, Any]:
        job_id = f"job-{next(self._ids)}"
        self.dispatched.append((data["name"], data.get("data")))
        task = asyncio.get_running_loop().create_task(self._deliver(job_id, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return {"status": "ok", "jobId": job_id}

    def _on_store(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self.stored_calls.append(data)
        self.stored[data["stepName"]] = data.get("result")
        return {"status": "ok"}

    async def _deliver(self, job_id: str, data: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        ack_id = self.channel.push_request(
            events.WORK_REQUEST,
            {"id": job_id, "name": data["name"], "data": data.get("data")},
        )
        outcome = await self.channel.wait_for_ack(ack_id, timeout=5.0)
        self.finished.append(data["name"])
        if outcome.get("status") == "ok":
            self.channel.push(events.completed_for(job_id), outcome.get("result"))
        else:
            self.channel.push(events.failed_for(job_id), {"error": outcome.get("error")})


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def settings(monkeypatch) -> ClientSettings:
    monkeypatch.delenv("PLANLLAMA_CONFIG_FILE", raising=False)
    return ClientSettings(api_token="test-token", transport="dummy", connect_timeout_seconds=1.0)


@pytest.fixture
def loopback(channel) -> Callable[..., LoopbackServer]:
    def _factory(stored: Optional[Dict[str, Any]] = None) -> LoopbackServer:
        return LoopbackServer(channel, stored)

    return _factory


@pytest.fixture
def make_channel() -> Callable[..., FakeChannel]:
    return FakeChannel
