"""
School Platform Common Core Package.
"""

from .config_enums import Environment
from .error_enums import ErrorCode
from .event_enums import Channel, EventType, channel_for, dead_letter_channel
from .events.envelope import EventEnvelope, caused_by, create_envelope
from .models.error_models import ErrorDetail

__all__ = [
    "Environment",
    "ErrorCode",
    "Channel",
    "EventType",
    "channel_for",
    "dead_letter_channel",
    "EventEnvelope",
    "caused_by",
    "create_envelope",
    "ErrorDetail",
]
