"""No-op transport for offline testing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from shared.protocol import build_event, events

from .base import BaseTransport

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Transport that announces readiness once and then swallows every send."""

    def __init__(self, settings=None) -> None:
        self._settings = settings
        self._inbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    async def connect(self) -> None:
        LOGGER.debug("Dummy transport connect()")
        self._inbound.put_nowait(build_event(events.CLIENT_READY))

    async def send(self, message: dict[str, Any]) -> None:
        LOGGER.debug("Dummy transport send(): %s", message)

    async def receive(self) -> dict[str, Any]:
        LOGGER.debug("Dummy transport receive()")
        return await self._inbound.get()

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
