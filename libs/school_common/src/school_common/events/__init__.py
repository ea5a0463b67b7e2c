from .envelope import EventEnvelope, caused_by, create_envelope
from .exam_events import (
    ExamApplication,
    ExamApplicationCreatedV1,
    ExamCreatedV1,
    ExamDetails,
    ExamResult,
    ExamResultPublishedV1,
)
from .notification_events import NotificationChannel, NotificationSendRequestedV1
from .payload_models import PAYLOAD_MODELS, payload_model_for
from .payment_events import (
    InstallmentDueDetails,
    InstallmentDueV1,
    PaymentDetails,
    PaymentError,
    PaymentFailedV1,
    PaymentProcessedV1,
)
from .student_events import (
    EnrollmentDetails,
    StudentCreatedV1,
    StudentEnrolledV1,
    StudentProfile,
    StudentUpdatedV1,
)

__all__ = [
    "EventEnvelope",
    "create_envelope",
    "caused_by",
    "ExamApplication",
    "ExamApplicationCreatedV1",
    "ExamCreatedV1",
    "ExamDetails",
    "ExamResult",
    "ExamResultPublishedV1",
    "NotificationChannel",
    "NotificationSendRequestedV1",
    "InstallmentDueDetails",
    "InstallmentDueV1",
    "PaymentDetails",
    "PaymentError",
    "PaymentFailedV1",
    "PaymentProcessedV1",
    "PAYLOAD_MODELS",
    "payload_model_for",
    "EnrollmentDetails",
    "StudentCreatedV1",
    "StudentEnrolledV1",
    "StudentProfile",
    "StudentUpdatedV1",
]
