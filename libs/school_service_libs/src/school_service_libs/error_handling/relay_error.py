"""
Core exception class for the school platform event relay.

Every error raised by the relay carries an immutable ``ErrorDetail`` so that
callers, logs and dead-letter records see the same structured data.
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from school_common.models.error_models import ErrorDetail


class RelayError(Exception):
    """Base exception carrying a structured ErrorDetail."""

    def __init__(self, error_detail: ErrorDetail) -> None:
        super().__init__(error_detail.message)
        self.error_detail = error_detail
        self._record_to_span()

    @property
    def error_code(self) -> str:
        return self.error_detail.error_code.value

    @property
    def correlation_id(self) -> str | None:
        return self.error_detail.correlation_id

    @property
    def service(self) -> str:
        return self.error_detail.service

    @property
    def operation(self) -> str:
        return self.error_detail.operation

    def _record_to_span(self) -> None:
        """Attach the error to the active OpenTelemetry span, if any."""
        span = trace.get_current_span()
        if span is None or not span.is_recording():
            return

        span.set_status(Status(StatusCode.ERROR, self.error_detail.message))
        span.set_attribute("error", True)
        span.set_attribute("error.code", self.error_code)
        span.set_attribute("error.service", self.service)
        span.set_attribute("error.operation", self.operation)
        for key, value in self.error_detail.details.items():
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(f"error.details.{key}", value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "error_detail": self.error_detail.model_dump(mode="json"),
        }

    def add_detail(self, key: str, value: Any) -> RelayError:
        """Return a new error of the same class with an extra detail entry."""
        new_detail = self.error_detail.model_copy(
            update={"details": {**self.error_detail.details, key: value}}
        )
        return type(self)(new_detail)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.error_detail.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.error_code}, "
            f"message={self.error_detail.message!r}, "
            f"service={self.service}, operation={self.operation}, "
            f"correlation_id={self.correlation_id})"
        )


class TransportError(RelayError):
    """Broker unreachable or timed out. Retryable by the caller or by redelivery."""


class DecodeError(RelayError):
    """Malformed envelope. Fatal for that message; it goes straight to quarantine."""


class HandlerError(RelayError):
    """Domain logic failure. Retried up to the attempt cap, then dead-lettered."""


class DuplicateClaimError(RelayError):
    """Idempotency store unreachable. The delivery is failed, never assumed unseen."""
