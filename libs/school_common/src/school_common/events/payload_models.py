"""Payload schema for every platform event type, resolved at dispatch time."""

from __future__ import annotations

from pydantic import BaseModel

from school_common.event_enums import EventType

from .exam_events import ExamApplicationCreatedV1, ExamCreatedV1, ExamResultPublishedV1
from .notification_events import NotificationSendRequestedV1
from .payment_events import InstallmentDueV1, PaymentFailedV1, PaymentProcessedV1
from .student_events import StudentCreatedV1, StudentEnrolledV1, StudentUpdatedV1

PAYLOAD_MODELS: dict[EventType, type[BaseModel]] = {
    EventType.STUDENT_CREATED: StudentCreatedV1,
    EventType.STUDENT_UPDATED: StudentUpdatedV1,
    EventType.STUDENT_ENROLLED: StudentEnrolledV1,
    EventType.PAYMENT_PROCESSED: PaymentProcessedV1,
    EventType.PAYMENT_FAILED: PaymentFailedV1,
    EventType.INSTALLMENT_DUE: InstallmentDueV1,
    EventType.EXAM_CREATED: ExamCreatedV1,
    EventType.EXAM_APPLICATION_CREATED: ExamApplicationCreatedV1,
    EventType.EXAM_RESULT_PUBLISHED: ExamResultPublishedV1,
    EventType.NOTIFICATION_SEND: NotificationSendRequestedV1,
}


def payload_model_for(event_type: EventType | str) -> type[BaseModel] | None:
    try:
        return PAYLOAD_MODELS.get(EventType(event_type))
    except ValueError:
        return None
