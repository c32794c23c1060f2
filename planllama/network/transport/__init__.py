"""Transport implementations for the client channel."""

from .base import BaseTransport
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = ["BaseTransport", "DummyTransport", "WebSocketTransport"]
