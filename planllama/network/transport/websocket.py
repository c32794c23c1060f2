"""WebSocket transport implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import websockets

from planllama.config import ClientSettings
from planllama.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """WebSocket-based channel transport carrying JSON text frames."""

    def __init__(self, settings: ClientSettings) -> None:
        self._settings = settings
        self._ws: Optional[Any] = None

    async def connect(self) -> None:
        url = self._settings.ws_url
        LOGGER.info("Connecting to job server WebSocket at %s", url)
        headers = {}
        if self._settings.api_token:
            headers["Authorization"] = f"Bearer {self._settings.api_token}"
        self._ws = await websockets.connect(
            url,
            additional_headers=headers,
            user_agent_header=self._settings.user_agent,
        )

    async def send(self, message: dict[str, Any]) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        payload = json.dumps(message, default=str)
        LOGGER.debug("WebSocket send: %s", payload)
        await self._ws.send(payload)

    async def receive(self) -> dict[str, Any]:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        raw = await self._ws.recv()
        LOGGER.debug("WebSocket receive: %s", raw)
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def close(self) -> None:
        if self._ws:
            LOGGER.info("Closing WebSocket transport")
            await self._ws.close()
            self._ws = None
