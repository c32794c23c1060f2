import asyncio
import logging

import pytest

from planllama.network import SocketChannel
from planllama.network.transport.dummy import DummyTransport
from shared.protocol import Frame, build_ack, build_event, events


class _QueueTransport(DummyTransport):
    """Transport fed by the test; records everything the client sends."""

    def __init__(self) -> None:
        super().__init__(None)
        self.sent = []
        self.connects = 0

    async def connect(self) -> None:
        self.connects += 1

    async def send(self, message):
        self.sent.append(message)

    def feed(self, frame) -> None:
        self._inbound.put_nowait(frame)


async def _settle(predicate, attempts=100):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_events_and_acks_are_routed(settings):
    transport = _QueueTransport()
    channel = SocketChannel(settings, transport_factory=lambda _: transport)
    received = []
    acks = []
    ready = []
    channel.on("greeting", lambda data, ack: received.append(data))
    channel.add_ready_hook(lambda initial: ready.append(initial))

    await channel.connect()
    ack_id = await channel.emit(events.GET_QUEUE_SIZE, {"jobName": "email"}, callback=acks.append)

    transport.feed(build_event(events.CLIENT_READY))
    transport.feed(build_event("greeting", {"hello": "world"}))
    transport.feed(build_ack(ack_id, {"status": "ok", "queueSize": 3}))
    await _settle(lambda: acks)

    assert transport.sent == [
        {"kind": "event", "event": events.GET_QUEUE_SIZE, "data": {"jobName": "email"}, "ackId": ack_id}
    ]
    assert ready == [True]
    assert received == [{"hello": "world"}]
    assert acks == [{"status": "ok", "queueSize": 3}]
    await channel.close()


@pytest.mark.asyncio
async def test_inbound_request_is_acknowledged_once(settings, caplog):
    transport = _QueueTransport()
    channel = SocketChannel(settings, transport_factory=lambda _: transport)

    async def answer(data, ack):
        await ack({"status": "ok", "result": data["n"] + 1})
        await ack({"status": "ok", "result": "again"})

    channel.on(events.WORK_REQUEST, answer)
    await channel.connect()
    caplog.set_level(logging.WARNING, logger="planllama.network.channel")

    transport.feed(build_event(events.WORK_REQUEST, {"n": 1}, ack_id=77))
    await _settle(lambda: transport.sent and "duplicate" in caplog.text)

    assert transport.sent == [{"kind": "ack", "ackId": 77, "data": {"status": "ok", "result": 2}}]
    assert "Suppressed duplicate acknowledgement" in caplog.text
    await channel.close()


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped(settings, caplog):
    transport = _QueueTransport()
    channel = SocketChannel(settings, transport_factory=lambda _: transport)
    received = []
    channel.on("ping", lambda data, ack: received.append(data))
    await channel.connect()
    caplog.set_level(logging.WARNING, logger="planllama.network.socket_channel")

    transport.feed({"kind": "event"})
    transport.feed({"kind": "bogus", "event": "ping"})
    transport.feed(build_event("ping", 1))
    await _settle(lambda: received)

    assert received == [1]
    assert caplog.text.count("Dropping malformed frame") == 2
    await channel.close()


@pytest.mark.asyncio
async def test_close_fails_outstanding_acknowledgements(settings):
    transport = _QueueTransport()
    channel = SocketChannel(settings, transport_factory=lambda _: transport)
    await channel.connect()

    pending = asyncio.create_task(channel.call(events.GET_JOB, {"jobId": "job-1"}))
    await _settle(lambda: transport.sent)
    await channel.close()

    assert await pending == {"status": "error", "error": "Connection lost"}
    assert not channel.connected


@pytest.mark.asyncio
async def test_listener_failures_do_not_break_routing(settings, caplog):
    transport = _QueueTransport()
    channel = SocketChannel(settings, transport_factory=lambda _: transport)
    received = []

    def broken(data, ack):
        raise RuntimeError("listener bug")

    channel.on("tick", broken)
    channel.once("tick", lambda data, ack: received.append(data))
    await channel.connect()

    transport.feed(build_event("tick", 1))
    transport.feed(build_event("tick", 2))
    await _settle(lambda: channel.listener_count("tick") == 1 and "listener bug" in caplog.text)
    await asyncio.sleep(0.01)

    assert received == [1]
    assert "Listener for tick failed" in caplog.text
    await channel.close()


@pytest.mark.asyncio
async def test_unnamed_event_frame_is_ignored(channel, caplog):
    caplog.set_level(logging.WARNING, logger="planllama.network.channel")

    channel.route_frame(Frame(kind="event", data={"orphan": True}))

    assert "Ignoring event frame without an event name" in caplog.text
    assert channel.sent == []
