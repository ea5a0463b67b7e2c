"""Dead-letter record model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from school_common.events.envelope import EventEnvelope


class DeadLetterRecord(BaseModel):
    """
    Immutable quarantine record for a message that could not be processed.

    ``attempt_count`` is 0 for poison messages that never reached a handler.
    ``envelope`` is absent when the raw message could not be decoded; such
    records keep the undecodable text in ``raw_value`` instead.
    """

    model_config = ConfigDict(frozen=True)

    envelope_id: str = Field(min_length=1)
    original_channel: str
    consumer_group: str
    failure_reason: str
    attempt_count: int = Field(ge=0)
    last_attempt_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event_type: str | None = None
    raw_value: str | None = None
    envelope: EventEnvelope | None = None

    @property
    def is_poison(self) -> bool:
        return self.attempt_count == 0

    @property
    def is_replayable(self) -> bool:
        return self.envelope is not None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> DeadLetterRecord:
        return cls.model_validate_json(raw)
