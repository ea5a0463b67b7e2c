"""
Event envelope shared by every service on the platform.

The wire shape is a stable, additive-only contract consumed by services
outside this repository:

    {"id", "type", "tenantId", "timestamp", "payload", "correlationId", "causationId"}

Python code uses snake_case attributes; serialization always goes through the
camelCase aliases.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventEnvelope(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid4()), alias="id", min_length=1)
    event_type: str = Field(alias="type", min_length=1)  # e.g., "payment.processed"
    tenant_id: str | None = Field(default=None, alias="tenantId")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str | None = Field(default=None, alias="correlationId")
    causation_id: str | None = Field(default=None, alias="causationId")

    # Unknown wire fields are ignored so producers can add optional fields
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @property
    def partition_key(self) -> str:
        """Ordering key: the tenant, or the event itself for platform-global events."""
        return self.tenant_id or self.event_id

    def to_wire(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_wire(cls, raw: bytes | str) -> EventEnvelope:
        return cls.model_validate_json(raw)


def _normalize_payload(payload: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json")
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(f"Event payload must be a mapping or model, got {type(payload).__name__}")
    try:
        # Normalize through strict JSON so the in-memory envelope equals its decoded copy
        return json.loads(json.dumps(data, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Event payload is not JSON serializable: {e}") from e


def create_envelope(
    event_type: str,
    payload: BaseModel | Mapping[str, Any],
    *,
    tenant_id: str | None = None,
    correlation_id: str | None = None,
    causation_id: str | None = None,
) -> EventEnvelope:
    """
    Create a new envelope with a fresh id and the current UTC timestamp.

    Raises:
        ValueError: If the payload cannot be serialized to JSON.
    """
    return EventEnvelope(
        event_type=event_type.value if isinstance(event_type, Enum) else event_type,
        tenant_id=tenant_id,
        payload=_normalize_payload(payload),
        correlation_id=correlation_id,
        causation_id=causation_id,
    )


def caused_by(
    parent: EventEnvelope,
    event_type: str,
    payload: BaseModel | Mapping[str, Any],
) -> EventEnvelope:
    """Create a follow-up envelope linked to ``parent`` in the same causal chain."""
    return create_envelope(
        event_type,
        payload,
        tenant_id=parent.tenant_id,
        correlation_id=parent.correlation_id or parent.event_id,
        causation_id=parent.event_id,
    )
