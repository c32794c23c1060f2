"""Duplex message channel: named events, acknowledgements and listeners.

The channel is the only thing the dispatcher, correlator and worker engine
talk to.  ``BaseChannel`` owns everything that does not depend on the wire:

- listener routing (``on``/``once``/``off``)
- acknowledgement bookkeeping for outbound events (``emit(..., callback=)``)
- acknowledgement senders for inbound events that asked for one
- ready hooks fired on every ``client_ready`` announcement

Acknowledgement callbacks and synchronous listeners run inline while the
frame is routed, so a callback can subscribe to follow-up events before the
next frame is looked at.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from itertools import count
from typing import Any, Dict, List, Optional

from shared.protocol import Frame, build_ack, build_event, events

LOGGER = logging.getLogger(__name__)

Ack = Callable[[Any], Awaitable[None]]
AckCallback = Callable[[Any], None]
Listener = Callable[[Any, Optional[Ack]], Any]
ReadyHook = Callable[[bool], Awaitable[None] | None]


@dataclass(eq=False)
class _Subscription:
    listener: Listener
    once: bool = False


class BaseChannel(ABC):
    """Transport-independent half of a channel."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[_Subscription]] = defaultdict(list)
        self._pending_acks: Dict[int, AckCallback] = {}
        self._ack_counter = count(1)
        self._ready_hooks: List[ReadyHook] = []
        self._ready_seen = False
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def _send_frame(self, frame: dict[str, Any]) -> None:
        ...

    # Outbound ---------------------------------------------------------------
    async def emit(self, event: str, data: Any = None, *, callback: Optional[AckCallback] = None) -> Optional[int]:
        """Send ``event``; ``callback`` receives the peer's acknowledgement."""

        ack_id: Optional[int] = None
        if callback is not None:
            ack_id = next(self._ack_counter)
            self._pending_acks[ack_id] = callback
        try:
            await self._send_frame(build_event(event, data, ack_id=ack_id))
        except Exception:
            if ack_id is not None:
                self._pending_acks.pop(ack_id, None)
            raise
        return ack_id

    async def call(self, event: str, data: Any = None, *, timeout: Optional[float] = None) -> Any:
        """Send ``event`` and wait for its acknowledgement payload."""

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _resolve(response: Any) -> None:
            if not future.done():
                future.set_result(response)

        ack_id = await self.emit(event, data, callback=_resolve)
        try:
            if timeout:
                return await asyncio.wait_for(future, timeout=timeout)
            return await future
        finally:
            if not future.done() or future.cancelled():
                self.discard_ack(ack_id)

    def discard_ack(self, ack_id: Optional[int]) -> None:
        """Forget an acknowledgement the caller no longer waits for."""

        if ack_id is not None:
            self._pending_acks.pop(ack_id, None)

    # Subscriptions ----------------------------------------------------------
    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(_Subscription(listener))

    def once(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(_Subscription(listener, once=True))

    def off(self, event: str, listener: Listener) -> None:
        subscriptions = self._listeners.get(event)
        if not subscriptions:
            return
        for subscription in list(subscriptions):
            if subscription.listener == listener:
                subscriptions.remove(subscription)
        if not subscriptions:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def add_ready_hook(self, hook: ReadyHook) -> None:
        """Register a hook invoked with ``initial`` on every client_ready."""

        self._ready_hooks.append(hook)

    # Inbound ----------------------------------------------------------------
    def route_frame(self, frame: Frame) -> None:
        """Route one parsed inbound frame."""

        if frame.kind == "ack":
            callback = self._pending_acks.pop(frame.ack_id, None)  # type: ignore[arg-type]
            if callback is None:
                LOGGER.debug("Ignoring acknowledgement with no pending request ack=%s", frame.ack_id)
                return
            try:
                callback(frame.data)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Acknowledgement callback failed ack=%s", frame.ack_id)
            return

        if frame.event is None:
            LOGGER.warning("Ignoring event frame without an event name")
            return
        ack = self._ack_sender(frame.ack_id) if frame.ack_id is not None else None
        if frame.event == events.CLIENT_READY:
            self._announce_ready()
        self.deliver(frame.event, frame.data, ack)

    def deliver(self, event: str, data: Any = None, ack: Optional[Ack] = None) -> int:
        """Invoke the listeners of ``event``; returns how many were called."""

        subscriptions = list(self._listeners.get(event, ()))
        if not subscriptions:
            LOGGER.debug("No listener registered for %s", event)
            return 0
        delivered = 0
        for subscription in subscriptions:
            current = self._listeners.get(event)
            if not current or subscription not in current:
                continue
            if subscription.once:
                current.remove(subscription)
                if not current:
                    self._listeners.pop(event, None)
            self._invoke_listener(event, subscription.listener, data, ack)
            delivered += 1
        return delivered

    def fail_pending_acks(self, reason: str) -> None:
        """Answer every outstanding acknowledgement with an error response."""

        pending = list(self._pending_acks.items())
        self._pending_acks.clear()
        if pending:
            LOGGER.debug("Failing %s pending acknowledgements: %s", len(pending), reason)
        for ack_id, callback in pending:
            try:
                callback({"status": "error", "error": reason})
            except Exception:  # noqa: BLE001
                LOGGER.exception("Acknowledgement callback failed ack=%s", ack_id)

    async def cancel_tasks(self) -> None:
        if not self._tasks:
            return
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _ack_sender(self, ack_id: int) -> Ack:
        sent = False

        async def _ack(payload: Any = None) -> None:
            nonlocal sent
            if sent:
                LOGGER.warning("Suppressed duplicate acknowledgement ack=%s", ack_id)
                return
            sent = True
            await self._send_frame(build_ack(ack_id, payload))

        return _ack

    def _announce_ready(self) -> None:
        initial = not self._ready_seen
        self._ready_seen = True
        LOGGER.debug("Server ready (initial=%s)", initial)
        for hook in list(self._ready_hooks):
            try:
                result = hook(initial)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Ready hook failed: %s", hook)
                continue
            if inspect.isawaitable(result):
                self._spawn(result, name="channel-ready-hook")

    def _invoke_listener(self, event: str, listener: Listener, data: Any, ack: Optional[Ack]) -> None:
        try:
            result = listener(data, ack)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Listener for %s failed", event)
            return
        if inspect.isawaitable(result):
            self._spawn(result, name=f"channel-listener-{event}")

    def _spawn(self, awaitable: Awaitable[Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(awaitable)
        task.set_name(name)
        self._tasks.add(task)

        def _finalise(completed: asyncio.Task[Any]) -> None:
            self._tasks.discard(completed)
            if completed.cancelled():
                return
            exc = completed.exception()
            if exc is not None:
                LOGGER.error("Background task %s failed: %s", completed.get_name(), exc, exc_info=exc)

        task.add_done_callback(_finalise)
        return task
