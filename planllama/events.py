"""Minimal outward event emitter for client lifecycle notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Tuple

LOGGER = logging.getLogger(__name__)

EventListener = Callable[..., Any]


class EventEmitter:
    """Synchronous emitter; coroutine listeners are scheduled as tasks.

    Listener failures are logged and never reach the emitting code.
    """

    def __init__(self) -> None:
        self._event_listeners: Dict[str, List[Tuple[EventListener, bool]]] = defaultdict(list)
        self._listener_tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, listener: EventListener) -> EventListener:
        self._event_listeners[event].append((listener, False))
        return listener

    def once(self, event: str, listener: EventListener) -> EventListener:
        self._event_listeners[event].append((listener, True))
        return listener

    def off(self, event: str, listener: EventListener) -> None:
        entries = self._event_listeners.get(event)
        if not entries:
            return
        entries[:] = [entry for entry in entries if entry[0] != listener]
        if not entries:
            self._event_listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._event_listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of ``event``; returns whether any existed."""

        entries = list(self._event_listeners.get(event, ()))
        if not entries:
            return False
        remaining = [entry for entry in self._event_listeners[event] if not entry[1]]
        if remaining:
            self._event_listeners[event] = remaining
        else:
            self._event_listeners.pop(event, None)
        for listener, _once in entries:
            try:
                result = listener(*args)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Listener for %s failed", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._finalise_listener)
        return True

    def _finalise_listener(self, task: asyncio.Task[Any]) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Async listener failed: %s", exc, exc_info=exc)
