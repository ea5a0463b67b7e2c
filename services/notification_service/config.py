"""Configuration settings for Notification Service.

Environment variables are prefixed with 'NOTIFICATION_' for service isolation;
ENVIRONMENT is read from the global variable.
"""

from __future__ import annotations

from typing import Literal

from dotenv import find_dotenv, load_dotenv
from pydantic import Field
from pydantic_settings import SettingsConfigDict
from school_common.event_enums import Channel
from school_service_libs.config import RelaySettings

# Load .env file from repository root, regardless of current working directory
load_dotenv(find_dotenv(".env"))


class NotificationSettings(RelaySettings):
    """Configuration settings for Notification Service."""

    model_config = SettingsConfigDict(env_prefix="NOTIFICATION_", extra="ignore")

    SERVICE_NAME: str = "notification-service"
    CONSUMER_GROUP: str = "notification-service"
    SUBSCRIBED_CHANNELS: list[str] = Field(
        default_factory=lambda: [
            Channel.STUDENT_EVENTS.value,
            Channel.PAYMENT_EVENTS.value,
            Channel.EXAM_EVENTS.value,
            Channel.NOTIFICATION_EVENTS.value,
        ]
    )

    # Sender configuration
    SENDER_PROVIDER: Literal["mock"] = "mock"
    MOCK_SENDER_FAILURE_RATE: float = Field(default=0.0, ge=0.0, le=1.0)

    # Template configuration
    TEMPLATE_PATH: str = "templates"
    DEFAULT_EMAIL_SUBJECT: str = "Bildirim"

    # Optional JSON seed for the in-memory contact directory
    CONTACT_DIRECTORY_FILE: str | None = None


settings = NotificationSettings()
