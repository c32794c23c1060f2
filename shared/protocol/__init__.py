from . import events
from .frames import Frame, build_ack, build_event, parse_frame

__all__ = [
    "events",
    "Frame",
    "build_ack",
    "build_event",
    "parse_frame",
]
