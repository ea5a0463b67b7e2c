"""Mock notification sender for development and testing.

Records every message instead of delivering it. Real SMS and e-mail gateways
are operated outside this repository.
"""

from __future__ import annotations

import random
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from school_common.events.notification_events import NotificationChannel
from school_service_libs.logging_utils import create_service_logger

from services.notification_service.protocols import (
    NotificationSenderProtocol,
    NotificationSendResult,
)

logger = create_service_logger("notification_service.sender_mock")


class MockNotificationSender(NotificationSenderProtocol):
    """Mock sender that logs messages and simulates configurable failures."""

    def __init__(self, failure_rate: float = 0.0):
        self.failure_rate = failure_rate
        self._sent: list[dict[str, Any]] = []

    async def send(
        self,
        channel: NotificationChannel,
        recipient: str,
        content: str,
        subject: str | None = None,
    ) -> NotificationSendResult:
        if random.random() < self.failure_rate:
            error_message = "Mock sender: Simulated delivery failure"
            logger.warning(error_message, channel=channel.value, recipient=recipient)
            return NotificationSendResult(success=False, error_message=error_message)

        message_id = f"mock_{uuid4().hex[:12]}"
        self._sent.append(
            {
                "channel": channel,
                "recipient": recipient,
                "subject": subject,
                "content": content,
                "sent_at": datetime.now(UTC),
                "provider_message_id": message_id,
            }
        )
        logger.info(
            "Mock notification sent",
            channel=channel.value,
            recipient=recipient,
            subject=subject,
            provider_message_id=message_id,
        )
        return NotificationSendResult(success=True, provider_message_id=message_id)

    def get_provider_name(self) -> str:
        return "mock"

    def get_sent_messages(self) -> list[dict[str, Any]]:
        """Get list of sent messages for testing/inspection."""
        return self._sent.copy()

    def clear_sent_messages(self) -> None:
        self._sent.clear()
