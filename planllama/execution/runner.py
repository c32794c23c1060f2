"""Invoke user handlers according to their execution mode."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

LOGGER = logging.getLogger(__name__)

EXEC_MODE_AUTO = "auto"
EXEC_MODE_INLINE = "inline"
EXEC_MODE_THREAD = "thread"
EXEC_MODE_ALIASES = {
    "async": EXEC_MODE_INLINE,
    "event_loop": EXEC_MODE_INLINE,
    "loop": EXEC_MODE_INLINE,
}


def normalize_exec_mode(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in {EXEC_MODE_AUTO, EXEC_MODE_INLINE, EXEC_MODE_THREAD}:
        return normalized
    return EXEC_MODE_ALIASES.get(normalized)


class HandlerRunner:
    """Calls a handler with one argument and returns its (awaited) result.

    ``auto`` runs coroutine functions on the event loop and plain callables
    in a worker thread, so a blocking handler cannot stall deadline tracking.
    """

    def __init__(self, *, default_exec_mode: str = EXEC_MODE_AUTO) -> None:
        self._default_exec_mode = normalize_exec_mode(default_exec_mode) or EXEC_MODE_AUTO

    async def run(self, handler: Callable[[Any], Any], argument: Any, *, exec_mode: Optional[str] = None) -> Any:
        mode = normalize_exec_mode(exec_mode) or self._default_exec_mode
        if mode == EXEC_MODE_INLINE or inspect.iscoroutinefunction(handler):
            return await self._maybe_await(handler(argument))
        if mode == EXEC_MODE_THREAD or mode == EXEC_MODE_AUTO:
            result = await asyncio.to_thread(handler, argument)
            if inspect.isawaitable(result):
                if mode == EXEC_MODE_THREAD:
                    LOGGER.warning("Threaded handler returned awaitable; running inline")
                return await result
            return result
        raise ValueError(f"Unsupported exec mode {mode!r}")

    @staticmethod
    async def _maybe_await(value: Any) -> Any:
        if inspect.isawaitable(value):
            return await value
        return value
