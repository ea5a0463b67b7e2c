"""Protocol definitions for Notification Service dependency injection.

Contacts and exam details are owned by other services; the notification
service only reads them through ContactDirectoryProtocol.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, NamedTuple, Protocol

from pydantic import BaseModel
from school_common.events.notification_events import NotificationChannel


class NotificationSendResult(NamedTuple):
    """Result of handing a message to a delivery provider."""

    success: bool
    provider_message_id: str | None = None
    error_message: str | None = None


class RenderedNotification(NamedTuple):
    """Result of rendering a notification template."""

    content: str
    subject: str | None = None


class Contact(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None


class StudentContacts(BaseModel):
    """A student with the primary parent who receives the family's notifications."""

    student_id: str
    student_name: str
    school_name: str
    primary_parent: Contact | None = None
    contract_no: str | None = None


class ExamInfo(BaseModel):
    exam_id: str
    name: str
    date: datetime
    venue: str


class ApplicantInfo(BaseModel):
    application_id: str
    exam_name: str
    candidate: Contact


class ContactDirectoryProtocol(Protocol):
    """Read-only lookups scoped by tenant."""

    async def get_student(self, tenant_id: str, student_id: str) -> StudentContacts | None: ...

    async def get_student_by_contract(
        self, tenant_id: str, contract_id: str
    ) -> StudentContacts | None: ...

    async def get_exam(self, tenant_id: str, exam_id: str) -> ExamInfo | None: ...

    async def get_applicant(self, tenant_id: str, application_id: str) -> ApplicantInfo | None:
        """Return the applicant, falling back to the primary parent's e-mail for students."""
        ...


class NotificationSenderProtocol(Protocol):
    """Protocol for SMS and e-mail delivery providers."""

    async def send(
        self,
        channel: NotificationChannel,
        recipient: str,
        content: str,
        subject: str | None = None,
    ) -> NotificationSendResult:
        """Deliver one message.

        Args:
            channel: SMS or EMAIL
            recipient: Phone number or e-mail address
            content: Rendered message body (HTML for e-mail)
            subject: E-mail subject line, ignored for SMS

        Returns:
            NotificationSendResult with success status and provider details
        """
        ...

    def get_provider_name(self) -> str: ...


class TemplateRendererProtocol(Protocol):
    async def render(
        self,
        template_name: str,
        channel: NotificationChannel,
        variables: dict[str, Any],
    ) -> RenderedNotification:
        """Render a template for the given channel.

        Raises:
            RelayError: If the template doesn't exist or rendering fails
        """
        ...

    async def template_exists(self, template_name: str, channel: NotificationChannel) -> bool: ...
