import asyncio
import logging
import threading

import pytest

from planllama.errors import HANDLER_REQUIRED_MESSAGE, HandlerRequiredError, JobTimeoutError
from planllama.events import EventEmitter
from planllama.execution import HandlerRunner, WorkerEngine
from shared.protocol import events


class _Recorder(EventEmitter):
    def __init__(self) -> None:
        super().__init__()
        self.seen = []
        for name in ("active", "completed", "failed"):
            self.on(name, lambda *args, _name=name: self.seen.append((_name, args)))


def _engine(channel, **kwargs):
    emitter = _Recorder()
    engine = WorkerEngine(channel, emitter, **kwargs)
    engine.attach()
    return engine, emitter


def _job(name, job_id="job-1", **extra):
    return {"id": job_id, "name": name, "data": {"n": 2}, **extra}


@pytest.mark.asyncio
async def test_unregistered_job_fails_without_started_notice(channel):
    engine, emitter = _engine(channel)

    ack_id = channel.push_request(events.WORK_REQUEST, _job("ghost"))
    ack = await channel.wait_for_ack(ack_id)

    assert ack == {"status": "error", "error": "No handler registered for job: ghost"}
    assert channel.events_named(events.JOB_STARTED) == []
    assert emitter.seen == []


@pytest.mark.asyncio
async def test_successful_job_reports_started_completed_and_ack(channel):
    engine, emitter = _engine(channel)
    order = []

    async def double(job):
        order.append(("handler", list(channel.event_names())))
        return job.data["n"] * 2

    await engine.register("double", double)
    ack_id = channel.push_request(events.WORK_REQUEST, _job("double"))
    ack = await channel.wait_for_ack(ack_id)

    assert ack == {"status": "ok", "result": 4}
    assert order == [("handler", [events.REGISTER_WORKER, events.JOB_STARTED])]
    assert channel.events_named(events.JOB_STARTED) == [{"jobName": "double", "jobId": "job-1"}]
    assert channel.events_named(events.JOB_COMPLETED) == [{"jobName": "double", "jobId": "job-1", "result": 4}]
    assert [name for name, _ in emitter.seen] == ["active", "completed"]
    assert emitter.seen[1][1][1] == 4


@pytest.mark.asyncio
async def test_handler_error_is_normalised(channel):
    engine, emitter = _engine(channel)

    def explode(job):
        raise ValueError("bad input")

    await engine.register("explode", explode)
    ack_id = channel.push_request(events.WORK_REQUEST, _job("explode"))
    ack = await channel.wait_for_ack(ack_id)

    assert ack == {"status": "error", "error": "bad input"}
    assert channel.events_named(events.JOB_COMPLETED) == []
    failed = [args for name, args in emitter.seen if name == "failed"]
    assert isinstance(failed[0][1], ValueError)


@pytest.mark.asyncio
async def test_deadline_wins_and_late_result_is_discarded(channel, caplog):
    engine, emitter = _engine(channel)
    release = asyncio.Event()

    async def slow(job):
        await release.wait()
        return "too late"

    await engine.register("slow", slow)
    caplog.set_level(logging.WARNING, logger="planllama.execution.engine")

    ack_id = channel.push_request(events.WORK_REQUEST, _job("slow", expireInSeconds=0.05))
    ack = await channel.wait_for_ack(ack_id)
    assert ack == {"status": "error", "error": "Job 'slow' timed out after 0.05s"}

    release.set()
    for _ in range(50):
        if "Discarding late result" in caplog.text:
            break
        await asyncio.sleep(0.01)

    assert "Discarding late result of job slow" in caplog.text
    assert channel.events_named(events.JOB_COMPLETED) == []
    assert len(channel.acks_for(ack_id)) == 1
    failed = [args for name, args in emitter.seen if name == "failed"]
    assert len(failed) == 1
    assert isinstance(failed[0][1], JobTimeoutError)
    assert str(failed[0][1]) == "Job timed out"
    assert not any(name == "completed" for name, _ in emitter.seen)


@pytest.mark.asyncio
async def test_default_deadline_applies_when_job_has_none(channel):
    engine, _ = _engine(channel, default_expire_in_seconds=0.02)

    async def hang(job):
        await asyncio.sleep(1)

    await engine.register("hang", hang)
    ack_id = channel.push_request(events.WORK_REQUEST, _job("hang"))
    ack = await channel.wait_for_ack(ack_id)

    assert ack["error"] == "Job 'hang' timed out after 0.02s"
    await engine.stop()


@pytest.mark.asyncio
async def test_sync_handlers_run_off_the_event_loop(channel):
    engine, _ = _engine(channel, runner=HandlerRunner(default_exec_mode="auto"))
    loop_thread = threading.get_ident()
    seen = {}

    def blocking(job):
        seen["thread"] = threading.get_ident()
        return "done"

    await engine.register("blocking", blocking)
    ack_id = channel.push_request(events.WORK_REQUEST, _job("blocking"))

    assert await channel.wait_for_ack(ack_id) == {"status": "ok", "result": "done"}
    assert seen["thread"] != loop_thread


@pytest.mark.asyncio
async def test_malformed_work_request_is_rejected(channel):
    engine, _ = _engine(channel)

    ack_id = channel.push_request(events.WORK_REQUEST, {"name": "missing-id"})

    assert await channel.wait_for_ack(ack_id) == {"status": "error", "error": "Invalid job payload"}


@pytest.mark.asyncio
async def test_register_requires_callable_handler(channel):
    engine, _ = _engine(channel)

    with pytest.raises(HandlerRequiredError, match=HANDLER_REQUIRED_MESSAGE):
        await engine.register("nothing", None)
    with pytest.raises(HandlerRequiredError):
        await engine.register("nothing", "not callable")
    assert channel.sent == []


@pytest.mark.asyncio
async def test_registration_waits_for_connection_and_reasserts_in_order(channel):
    channel._connected = False
    engine, _ = _engine(channel)

    await engine.register("b", lambda job: None, {"teamSize": 2})
    await engine.register("a", lambda job: None)
    await engine.register("b", lambda job: 1, {"teamSize": 3})
    assert channel.sent == []

    await channel.connect()
    for _ in range(20):
        if len(channel.events_named(events.REGISTER_WORKER)) == 2:
            break
        await asyncio.sleep(0)

    assert channel.events_named(events.REGISTER_WORKER) == [
        {"jobName": "b", "options": {"teamSize": 3}},
        {"jobName": "a"},
    ]

    channel.push(events.CLIENT_READY)
    for _ in range(20):
        if len(channel.events_named(events.REGISTER_WORKER)) == 4:
            break
        await asyncio.sleep(0)
    assert [payload["jobName"] for payload in channel.events_named(events.REGISTER_WORKER)] == ["b", "a", "b", "a"]


@pytest.mark.asyncio
async def test_none_result_is_reported_explicitly(channel):
    engine, emitter = _engine(channel)
    await engine.register("noop", lambda job: None)

    ack_id = channel.push_request(events.WORK_REQUEST, _job("noop"))

    assert await channel.wait_for_ack(ack_id) == {"status": "ok", "result": None}
    assert channel.events_named(events.JOB_COMPLETED) == [{"jobName": "noop", "jobId": "job-1", "result": None}]


@pytest.mark.asyncio
async def test_lost_completion_notice_still_acks_success(channel, monkeypatch, caplog):
    engine, emitter = _engine(channel)
    send_frame = channel._send_frame

    async def flaky_send(frame):
        if frame.get("event") == events.JOB_COMPLETED:
            raise ConnectionResetError("socket closed")
        await send_frame(frame)

    monkeypatch.setattr(channel, "_send_frame", flaky_send)
    caplog.set_level(logging.WARNING, logger="planllama.execution.engine")
    await engine.register("double", lambda job: job.data["n"] * 2)

    ack_id = channel.push_request(events.WORK_REQUEST, _job("double"))

    assert await channel.wait_for_ack(ack_id) == {"status": "ok", "result": 4}
    assert [name for name, _ in emitter.seen] == ["active", "completed"]
    assert "Could not report completion of job double" in caplog.text
