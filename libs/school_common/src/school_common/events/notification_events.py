"""Direct notification requests published on ``notification.events``."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class NotificationChannel(str, Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"


class NotificationSendRequestedV1(BaseModel):
    """Any service asking the notification service to deliver a templated message."""

    channel: NotificationChannel
    recipient: str
    template_name: str
    template_data: dict[str, str] = Field(default_factory=dict)
