"""Channel backed by a reconnecting transport connection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError

from planllama.config import ClientSettings
from planllama.network.channel import BaseChannel
from planllama.network.connection import Connection
from planllama.network.transport import BaseTransport, DummyTransport, WebSocketTransport
from shared.protocol import parse_frame

LOGGER = logging.getLogger(__name__)

CONNECTION_LOST = "Connection lost"


def create_transport(settings: ClientSettings) -> BaseTransport:
    if settings.transport == "dummy":
        return DummyTransport(settings)
    return WebSocketTransport(settings)


class SocketChannel(BaseChannel):
    """Routes frames received over a ``Connection`` into the channel."""

    def __init__(
        self,
        settings: ClientSettings,
        transport_factory: Optional[Callable[[ClientSettings], BaseTransport]] = None,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._connection = Connection(
            settings,
            transport_factory or create_transport,
            on_connected=self._on_connected,
            on_disconnect=self._on_disconnect,
        )
        self._route_task: Optional[asyncio.Task[None]] = None

    @property
    def connected(self) -> bool:
        return self._connection.connected

    async def connect(self) -> None:
        await self._connection.start()
        if self._route_task is None or self._route_task.done():
            self._route_task = asyncio.create_task(self._route_loop(), name="channel-route")

    async def close(self) -> None:
        if self._route_task:
            self._route_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._route_task
            self._route_task = None
        await self._connection.stop()
        self.fail_pending_acks(CONNECTION_LOST)
        await self.cancel_tasks()

    async def _send_frame(self, frame: dict[str, Any]) -> None:
        await self._connection.send(frame)

    async def _route_loop(self) -> None:
        async for raw in self._connection.messages():
            try:
                frame = parse_frame(raw)
            except (ValidationError, ValueError) as exc:
                LOGGER.warning("Dropping malformed frame: %s", exc)
                continue
            self.route_frame(frame)

    async def _on_connected(self, initial: bool, attempt: int) -> None:
        if not initial:
            LOGGER.info("Channel reconnected after %s attempt(s); waiting for client_ready", attempt)

    async def _on_disconnect(self, exc: Exception) -> None:
        LOGGER.warning("Channel disconnected: %s", exc)
        self.fail_pending_acks(CONNECTION_LOST)
