"""
school_common.event_enums - Enums and helpers for the event-driven architecture.
"""

from __future__ import annotations

from enum import Enum


class Channel(str, Enum):
    """Broker channels (Kafka topics) shared by the platform services."""

    STUDENT_EVENTS = "student.events"
    PAYMENT_EVENTS = "payment.events"
    EXAM_EVENTS = "exam.events"
    NOTIFICATION_EVENTS = "notification.events"


class EventType(str, Enum):
    # -------------  Student events  -------------#
    STUDENT_CREATED = "student.created"
    STUDENT_UPDATED = "student.updated"
    STUDENT_ENROLLED = "student.enrolled"
    # -------------  Payment events  -------------#
    PAYMENT_PROCESSED = "payment.processed"
    PAYMENT_FAILED = "payment.failed"
    INSTALLMENT_DUE = "installment.due"
    # -------------  Exam events  -------------#
    EXAM_CREATED = "exam.created"
    EXAM_APPLICATION_CREATED = "exam.application.created"
    EXAM_RESULT_PUBLISHED = "exam.result.published"
    # -------------  Notification events  -------------#
    NOTIFICATION_SEND = "notification.send"


# Private mapping for channel_for() function
_CHANNEL_MAPPING = {
    EventType.STUDENT_CREATED: Channel.STUDENT_EVENTS,
    EventType.STUDENT_UPDATED: Channel.STUDENT_EVENTS,
    EventType.STUDENT_ENROLLED: Channel.STUDENT_EVENTS,
    EventType.PAYMENT_PROCESSED: Channel.PAYMENT_EVENTS,
    EventType.PAYMENT_FAILED: Channel.PAYMENT_EVENTS,
    EventType.INSTALLMENT_DUE: Channel.PAYMENT_EVENTS,
    EventType.EXAM_CREATED: Channel.EXAM_EVENTS,
    EventType.EXAM_APPLICATION_CREATED: Channel.EXAM_EVENTS,
    EventType.EXAM_RESULT_PUBLISHED: Channel.EXAM_EVENTS,
    EventType.NOTIFICATION_SEND: Channel.NOTIFICATION_EVENTS,
}


def channel_for(event_type: EventType | str) -> str:
    """
    Convert an EventType (or its string value) to the channel it is published on.
    """
    try:
        event = EventType(event_type)
    except ValueError:
        raise ValueError(f"Unknown event type '{event_type}'") from None

    if event not in _CHANNEL_MAPPING:
        mapped_events_summary = "\n".join(
            [f"- {e.name} ({e.value}) ➜ '{c.value}'" for e, c in _CHANNEL_MAPPING.items()],
        )
        raise ValueError(
            f"Event '{event.name} ({event.value})' does not have an explicit channel mapping. "
            f"All events intended for the broker must have deliberate channel contracts defined. "
            f"Currently mapped events:\n{mapped_events_summary}",
        )
    return _CHANNEL_MAPPING[event].value


def dead_letter_channel(channel: str) -> str:
    """Name of the quarantine topic mirroring a channel."""
    return f"{channel}.DLQ"
