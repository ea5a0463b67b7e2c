"""
Wire codec for EventEnvelope.

``decode_envelope(encode_envelope(e)) == e`` holds for every envelope. Any
decoding problem surfaces as DecodeError so the dispatcher can quarantine the
message without retrying it.
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from school_common.events.envelope import EventEnvelope

from school_service_libs.error_handling import raise_decode_error

T_Payload = TypeVar("T_Payload", bound=BaseModel)

SERVICE = "event-relay"


def encode_envelope(envelope: EventEnvelope) -> bytes:
    return envelope.to_wire()


def decode_envelope(raw: bytes | str | None) -> EventEnvelope:
    """
    Decode a raw broker message into an envelope.

    Raises:
        DecodeError: If the message is empty, not JSON, or not a valid envelope.
    """
    if raw is None or len(raw) == 0:
        raise_decode_error(SERVICE, "decode_envelope", "Message has no value")
    try:
        return EventEnvelope.from_wire(raw)
    except ValidationError as e:
        raise_decode_error(
            SERVICE,
            "decode_envelope",
            f"Invalid envelope: {e.error_count()} validation error(s)",
            errors=[err["msg"] for err in e.errors()],
        )
    except UnicodeDecodeError as e:
        raise_decode_error(SERVICE, "decode_envelope", f"Message is not UTF-8: {e}")


def decode_payload(envelope: EventEnvelope, model: type[T_Payload]) -> T_Payload:
    """
    Validate an envelope payload against the schema registered for its type.

    Raises:
        DecodeError: If the payload does not match ``model``.
    """
    try:
        return model.model_validate(envelope.payload)
    except ValidationError as e:
        raise_decode_error(
            SERVICE,
            "decode_payload",
            f"Payload does not match {model.__name__} for '{envelope.event_type}'",
            correlation_id=envelope.correlation_id,
            event_id=envelope.event_id,
            errors=[err["msg"] for err in e.errors()],
        )


def salvage_event_id(raw: bytes | str | None) -> str | None:
    """Best-effort extraction of the ``id`` field from an undecodable message."""
    if not raw:
        return None
    try:
        data: Any = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(data, dict) and isinstance(data.get("id"), str) and data["id"]:
        return str(data["id"])
    return None
