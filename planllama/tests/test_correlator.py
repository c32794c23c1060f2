import asyncio

import pytest

from planllama.dispatch import Correlator
from planllama.errors import JobFailedError
from shared.protocol import events


@pytest.mark.asyncio
async def test_duplicate_watch_returns_same_future(channel):
    correlator = Correlator(channel)

    first = correlator.watch("job-1")
    second = correlator.watch("job-1")

    assert first is second
    assert correlator.pending == 1
    assert channel.listener_count(events.completed_for("job-1")) == 1

    channel.push(events.completed_for("job-1"), 5)
    assert await first == 5
    assert correlator.pending == 0


@pytest.mark.asyncio
async def test_completion_deregisters_failure_listener(channel):
    correlator = Correlator(channel)
    future = correlator.watch("job-2")

    channel.push(events.completed_for("job-2"), {"ok": True})
    channel.push(events.failed_for("job-2"), {"error": "late"})

    assert await future == {"ok": True}
    assert channel.listener_count(events.failed_for("job-2")) == 0


@pytest.mark.asyncio
async def test_cancel_all_rejects_pending_calls(channel):
    correlator = Correlator(channel)
    futures = [correlator.watch("job-a"), correlator.watch("job-b")]

    correlator.cancel_all("Client stopped")

    for future in futures:
        with pytest.raises(JobFailedError, match="Client stopped"):
            await future
    assert correlator.pending == 0
    assert channel.listener_count(events.completed_for("job-a")) == 0


@pytest.mark.asyncio
async def test_cancelled_caller_releases_listeners(channel):
    correlator = Correlator(channel)
    future = correlator.watch("job-c")

    future.cancel()
    await asyncio.sleep(0)

    assert not correlator.is_pending("job-c")
    assert channel.listener_count(events.completed_for("job-c")) == 0
    assert channel.listener_count(events.failed_for("job-c")) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "notice, message",
    [
        ({"error": "disk full", "retryCount": 1}, "disk full"),
        ({"error": None}, "Job failed"),
        ("boom", "Job failed"),
    ],
)
async def test_failure_notice_carries_server_message(channel, notice, message):
    correlator = Correlator(channel)
    future = correlator.watch("job-9")

    channel.push(events.failed_for("job-9"), notice)

    with pytest.raises(JobFailedError) as excinfo:
        await future
    assert str(excinfo.value) == message
    assert excinfo.value.job_id == "job-9"
