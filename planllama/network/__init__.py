"""Channel, connection and transport layer."""

from .channel import Ack, BaseChannel
from .connection import Connection, TransportError
from .socket_channel import SocketChannel, create_transport

__all__ = [
    "Ack",
    "BaseChannel",
    "Connection",
    "SocketChannel",
    "TransportError",
    "create_transport",
]
