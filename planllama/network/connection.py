"""Reconnecting connection that owns the channel transport."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from planllama.config import ClientSettings
from planllama.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[ClientSettings], BaseTransport]

_AUTH_MARKERS = ("unauthorized", "forbidden", "invalid token")
_NETWORK_MARKERS = ("timeout", "timed out", "refused", "unreachable", "reset", "closed")


class TransportError(RuntimeError):
    """Raised when the transport cannot be (re)established or was stopped."""


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    return status


def classify_error(exc: BaseException) -> str:
    """Bucket a transport failure as ``auth``, ``network`` or ``unknown``."""

    status = _status_code(exc)
    if status in (401, 403):
        return "auth"
    message = str(exc).lower()
    if any(marker in message for marker in _AUTH_MARKERS):
        return "auth"
    if isinstance(exc, (OSError, asyncio.TimeoutError)) or any(marker in message for marker in _NETWORK_MARKERS):
        return "network"
    return "unknown"


@dataclass(frozen=True)
class Backoff:
    """Exponential reconnect delay with multiplicative jitter."""

    base: float
    ceiling: float
    jitter: float

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "Backoff":
        return cls(
            base=settings.reconnect_base_delay_seconds,
            ceiling=settings.reconnect_max_delay_seconds,
            jitter=settings.reconnect_jitter,
        )

    def delay(self, attempt: int) -> float:
        delay = min(self.ceiling, self.base * (2 ** max(attempt - 1, 0)))
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.1, delay)


class Connection:
    """Keeps one transport open and pumps its inbound frames into a queue.

    ``on_connected(initial, attempts)`` runs after every successful connect;
    ``on_disconnect(exc)`` runs once per lost transport, before the pump
    starts reconnecting.
    """

    def __init__(
        self,
        settings: ClientSettings,
        transport_factory: TransportFactory,
        *,
        on_connected: Optional[Callable[[bool, int], Awaitable[None]]] = None,
        on_disconnect: Optional[Callable[[Exception], Awaitable[None]]] = None,
        backoff: Optional[Backoff] = None,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._backoff = backoff or Backoff.from_settings(settings)
        self._on_connected = on_connected
        self._on_disconnect = on_disconnect
        self._transport: Optional[BaseTransport] = None
        self._inbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=settings.transport_recv_queue_max or 0)
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._connect_lock = asyncio.Lock()
        self._stopped = True
        self._connections = 0
        self.last_error_type: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._transport is not None and not self._stopped

    async def start(self) -> None:
        """Connect (retrying with backoff) and start pumping inbound frames."""

        if self._pump_task and not self._pump_task.done():
            return
        self._stopped = False
        await self._connect()
        self._pump_task = asyncio.create_task(self._pump(), name="transport-pump")

    async def stop(self) -> None:
        self._stopped = True
        if self._pump_task:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)

    async def send(self, message: dict[str, Any]) -> None:
        transport = self._transport
        if self._stopped or transport is None:
            raise TransportError("Transport not connected")
        try:
            await transport.send(message)
        except Exception as exc:
            await self._drop(transport, exc)
            raise TransportError(str(exc)) from exc

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Inbound raw frames, across reconnects, until stopped."""

        while not self._stopped:
            yield await self._inbound.get()

    async def _connect(self) -> None:
        async with self._connect_lock:
            attempt = 0
            while self._transport is None:
                if self._stopped:
                    raise TransportError("Transport connection stopped")
                attempt += 1
                transport = self._transport_factory(self._settings)
                try:
                    await transport.connect()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    self.last_error_type = classify_error(exc)
                    if self.last_error_type == "auth" and self._settings.reconnect_abort_on_auth_error:
                        self._stopped = True
                        raise TransportError("Server rejected the API token") from exc
                    wait = self._backoff.delay(attempt)
                    LOGGER.warning("Connect attempt %s failed: %s; retrying in %.2fs", attempt, exc, wait)
                    await asyncio.sleep(wait)
                    continue
                self._transport = transport
                self.last_error_type = None
                self._connections += 1
                LOGGER.info("Transport connected after %s attempt(s)", attempt)
                if self._on_connected:
                    try:
                        await self._on_connected(self._connections == 1, attempt)
                    except Exception:  # noqa: BLE001
                        LOGGER.exception("Connected callback failed")

    async def _drop(self, transport: BaseTransport, exc: Exception) -> None:
        # Both the pump and a failing send may report the same transport.
        if self._transport is not transport:
            return
        self._transport = None
        self.last_error_type = classify_error(exc)
        LOGGER.warning("Transport lost (%s): %s", self.last_error_type, exc)
        await self._close_quietly(transport)
        if self._on_disconnect:
            try:
                await self._on_disconnect(exc)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Disconnect callback failed")

    async def _pump(self) -> None:
        while not self._stopped:
            transport = self._transport
            if transport is None:
                try:
                    await self._connect()
                except TransportError as exc:
                    LOGGER.error("Giving up on reconnecting: %s", exc)
                    return
                continue
            try:
                raw = await transport.receive()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                await self._drop(transport, exc)
                continue
            await self._inbound.put(raw)

    @staticmethod
    async def _close_quietly(transport: BaseTransport) -> None:
        try:
            await transport.close()
        except Exception:  # noqa: BLE001
            LOGGER.debug("Ignoring transport close error", exc_info=True)
