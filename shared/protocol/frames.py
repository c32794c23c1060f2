"""Helpers for building/parsing channel frames."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python

Payload = Any


class Frame(BaseModel):
    """A single message on the wire: a named event or an acknowledgement."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["event", "ack"]
    event: Optional[str] = None
    data: Any = None
    ack_id: Optional[int] = Field(default=None, alias="ackId")


def _payload_data(payload: Payload) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(by_alias=True, exclude_unset=True, mode="json")
    if payload is None:
        return None
    return to_jsonable_python(payload, by_alias=True, serialize_unknown=True)


def _wire(frame: Frame) -> Dict[str, Any]:
    # None values inside the payload are kept; only envelope fields are trimmed.
    wire = frame.model_dump(by_alias=True, exclude_none=True, exclude={"data"})
    if frame.data is not None:
        wire["data"] = frame.data
    return wire


def build_event(event: str, payload: Payload = None, *, ack_id: Optional[int] = None) -> Dict[str, Any]:
    """Construct an event frame dict ready for transport."""

    return _wire(Frame(kind="event", event=event, data=_payload_data(payload), ack_id=ack_id))


def build_ack(ack_id: int, payload: Payload = None) -> Dict[str, Any]:
    """Build an acknowledgement frame answering ``ack_id``."""

    return _wire(Frame(kind="ack", ack_id=ack_id, data=_payload_data(payload)))


def parse_frame(raw: Dict[str, Any]) -> Frame:
    """Validate and parse a raw frame dict."""

    frame = Frame.model_validate(raw)
    if frame.kind == "event" and not frame.event:
        raise ValueError("event frame without an event name")
    if frame.kind == "ack" and frame.ack_id is None:
        raise ValueError("ack frame without an ackId")
    return frame
