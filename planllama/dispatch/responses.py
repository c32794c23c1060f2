"""Acknowledgement parsing shared by every dispatcher operation."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from planllama.errors import INVALID_RESPONSE_MESSAGE, InvalidResponseError, ServerError
from shared.models import ServerResponse


def parse_response(raw: Any, *, fallback: str = INVALID_RESPONSE_MESSAGE) -> ServerResponse:
    """Validate an acknowledgement; ``status: "error"`` raises ``ServerError``."""

    if not isinstance(raw, dict):
        raise InvalidResponseError(response=raw)
    try:
        response = ServerResponse.model_validate(raw)
    except ValidationError as exc:
        raise InvalidResponseError(response=raw) from exc
    if response.status == "error":
        raise ServerError(response.error or fallback)
    return response


def expect(raw: Any, *fields: str) -> ServerResponse:
    """Require ``status == "ok"`` and a non-empty value for each of ``fields``."""

    response = parse_response(raw)
    if response.status != "ok":
        raise InvalidResponseError(response=raw)
    for field_name in fields:
        if getattr(response, field_name) in (None, ""):
            raise InvalidResponseError(response=raw)
    return response
