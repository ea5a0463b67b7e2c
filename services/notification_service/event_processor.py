"""Event processor for Notification Service.

Turns platform events into SMS and e-mail notifications. Handlers run under
the relay's at-least-once delivery: a handler raises when delivery fails so
the event is retried, and returns normally when there is nobody to notify.

One event can fan out to several messages. Each (event, channel, template,
recipient) delivery holds its own idempotency claim, so retrying an event
after a partial failure only sends what has not gone out yet.
"""

from __future__ import annotations

import time
from typing import Any

from school_common.event_enums import EventType
from school_common.events.envelope import EventEnvelope
from school_common.events.exam_events import ExamApplicationCreatedV1, ExamResultPublishedV1
from school_common.events.notification_events import (
    NotificationChannel,
    NotificationSendRequestedV1,
)
from school_common.events.payment_events import InstallmentDueV1, PaymentProcessedV1
from school_common.events.student_events import StudentEnrolledV1
from school_service_libs.consumer import HandlerRegistry
from school_service_libs.error_handling import DuplicateClaimError, raise_handler_error
from school_service_libs.idempotency import ClaimStatus, IdempotencyGuard
from school_service_libs.logging_utils import create_service_logger, log_event_processing

from services.notification_service.metrics import NotificationMetrics
from services.notification_service.protocols import (
    ContactDirectoryProtocol,
    NotificationSenderProtocol,
    TemplateRendererProtocol,
)

logger = create_service_logger("notification_service.event_processor")


class NotificationEventProcessor:
    """Sends the notifications that follow student, payment and exam events."""

    def __init__(
        self,
        directory: ContactDirectoryProtocol,
        template_renderer: TemplateRendererProtocol,
        sender: NotificationSenderProtocol,
        metrics: NotificationMetrics,
        delivery_guard: IdempotencyGuard,
        consumer_group: str = "notification-service",
        default_email_subject: str = "Bildirim",
    ) -> None:
        self.directory = directory
        self.template_renderer = template_renderer
        self.sender = sender
        self.metrics = metrics
        self.delivery_guard = delivery_guard
        self.delivery_group = f"{consumer_group}.deliveries"
        self.default_email_subject = default_email_subject

    def build_registry(self) -> HandlerRegistry:
        registry = HandlerRegistry()
        registry.register(EventType.STUDENT_ENROLLED, self.handle_student_enrolled)
        registry.register(EventType.PAYMENT_PROCESSED, self.handle_payment_processed)
        registry.register(EventType.INSTALLMENT_DUE, self.handle_installment_due)
        registry.register(EventType.EXAM_APPLICATION_CREATED, self.handle_exam_application_created)
        registry.register(EventType.EXAM_RESULT_PUBLISHED, self.handle_exam_result_published)
        registry.register(EventType.NOTIFICATION_SEND, self.handle_notification_send)
        return registry

    async def send_notification(
        self,
        envelope: EventEnvelope,
        channel: NotificationChannel,
        recipient: str,
        template_name: str,
        template_data: dict[str, Any],
    ) -> None:
        """Render a template and hand it to the sender, at most once per event.

        Raises:
            HandlerError: If the provider rejects the message or another
                delivery of the same message is still in progress
            DuplicateClaimError: If the delivery claim cannot be checked
            RelayError: If the template is missing or fails to render
        """
        delivery_id = f"{envelope.event_id}:{channel.value}:{template_name}:{recipient}"
        status = await self.delivery_guard.claim(
            self.delivery_group, delivery_id, envelope.event_type
        )
        if status is ClaimStatus.COMPLETED:
            logger.info(
                "Notification already sent for this event, skipping",
                event_id=envelope.event_id,
                channel=channel.value,
                template=template_name,
            )
            return
        if status is ClaimStatus.IN_FLIGHT:
            raise_handler_error(
                service="notification-service",
                operation="send_notification",
                event_type=envelope.event_type,
                message=f"{channel.value} delivery already in progress",
                correlation_id=envelope.correlation_id,
                template=template_name,
            )

        try:
            started = time.monotonic()
            rendered = await self.template_renderer.render(template_name, channel, template_data)
            self.metrics.template_render_duration.observe(time.monotonic() - started)

            subject = rendered.subject or self.default_email_subject
            result = await self.sender.send(
                channel,
                recipient,
                rendered.content,
                subject=subject if channel == NotificationChannel.EMAIL else None,
            )
        except BaseException:
            await self._release_delivery(delivery_id)
            raise
        labels = (self.sender.get_provider_name(), channel.value, template_name)

        if not result.success:
            self.metrics.notifications_failed.labels(*labels).inc()
            await self._release_delivery(delivery_id)
            raise_handler_error(
                service="notification-service",
                operation="send_notification",
                event_type=envelope.event_type,
                message=f"{channel.value} delivery failed: {result.error_message}",
                correlation_id=envelope.correlation_id,
                template=template_name,
            )

        try:
            await self.delivery_guard.confirm(
                self.delivery_group, delivery_id, envelope.event_type
            )
        except DuplicateClaimError as e:
            # Sent already; an event retry before the lease expires resends it
            logger.error(f"Sent notification could not be marked delivered: {e}")

        self.metrics.notifications_sent.labels(*labels).inc()
        log_event_processing(
            logger,
            "Notification sent",
            envelope,
            channel=channel.value,
            template=template_name,
            provider_message_id=result.provider_message_id,
        )

    async def _release_delivery(self, delivery_id: str) -> None:
        try:
            await self.delivery_guard.release(self.delivery_group, delivery_id)
        except DuplicateClaimError as e:
            logger.error(f"Delivery claim kept until its lease expires: {e}")

    def _recipient_missing(self, envelope: EventEnvelope, reason: str) -> None:
        self.metrics.recipients_missing.labels(envelope.event_type).inc()
        logger.warning(f"Skipping notification: {reason}", event_type=envelope.event_type)

    async def handle_student_enrolled(
        self, envelope: EventEnvelope, payload: StudentEnrolledV1
    ) -> None:
        student = await self.directory.get_student(envelope.tenant_id, payload.student_id)
        parent = student.primary_parent if student else None
        if student is None or parent is None or not parent.email:
            self._recipient_missing(envelope, f"no parent e-mail for student {payload.student_id}")
            return

        await self.send_notification(
            envelope,
            NotificationChannel.EMAIL,
            parent.email,
            "welcome",
            {
                "parent_name": parent.name,
                "student_name": student.student_name,
                "school_name": student.school_name,
                "school_year": payload.enrollment.school_year,
                "class_level": payload.enrollment.class_level,
            },
        )

    async def handle_payment_processed(
        self, envelope: EventEnvelope, payload: PaymentProcessedV1
    ) -> None:
        student = await self.directory.get_student_by_contract(
            envelope.tenant_id, payload.contract_id
        )
        parent = student.primary_parent if student else None
        if student is None or parent is None or not parent.phone:
            self._recipient_missing(envelope, f"no parent phone for contract {payload.contract_id}")
            return

        await self.send_notification(
            envelope,
            NotificationChannel.SMS,
            parent.phone,
            "payment-confirmation",
            {
                "amount": payload.payment.amount,
                "student_name": student.student_name,
                "contract_no": student.contract_no,
            },
        )

    async def handle_installment_due(
        self, envelope: EventEnvelope, payload: InstallmentDueV1
    ) -> None:
        # The event carries its own recipient
        await self.send_notification(
            envelope,
            NotificationChannel.SMS,
            payload.due.parent_phone,
            "payment-reminder",
            {
                "student_name": payload.due.student_name,
                "amount": payload.due.amount,
                "due_date": payload.due.due_date,
            },
        )

    async def handle_exam_application_created(
        self, envelope: EventEnvelope, payload: ExamApplicationCreatedV1
    ) -> None:
        application = payload.application
        exam = await self.directory.get_exam(envelope.tenant_id, application.exam_id)
        if exam is None:
            self._recipient_missing(envelope, f"unknown exam {application.exam_id}")
            return

        variables = {
            "applicant_name": application.applicant_name,
            "exam_name": exam.name,
            "exam_date": exam.date,
            "venue": exam.venue,
        }
        if application.email:
            await self.send_notification(
                envelope, NotificationChannel.EMAIL, application.email, "exam-invitation", variables
            )
        await self.send_notification(
            envelope, NotificationChannel.SMS, application.phone, "exam-reminder", variables
        )

    async def handle_exam_result_published(
        self, envelope: EventEnvelope, payload: ExamResultPublishedV1
    ) -> None:
        for result in payload.results:
            applicant = await self.directory.get_applicant(
                envelope.tenant_id, result.application_id
            )
            if applicant is None or not applicant.candidate.email:
                self._recipient_missing(
                    envelope, f"no e-mail for application {result.application_id}"
                )
                continue

            await self.send_notification(
                envelope,
                NotificationChannel.EMAIL,
                applicant.candidate.email,
                "exam-results",
                {
                    "student_name": applicant.candidate.name,
                    "exam_name": applicant.exam_name,
                    "score": result.score,
                    "passed": result.passed,
                },
            )

    async def handle_notification_send(
        self, envelope: EventEnvelope, payload: NotificationSendRequestedV1
    ) -> None:
        await self.send_notification(
            envelope,
            payload.channel,
            payload.recipient,
            payload.template_name,
            dict(payload.template_data),
        )
