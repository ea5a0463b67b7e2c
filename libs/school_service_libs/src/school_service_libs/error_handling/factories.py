"""
Factory functions for raising relay errors with consistent ErrorDetail content.
"""

from __future__ import annotations

import traceback
from datetime import UTC, datetime
from typing import Any, NoReturn

from school_common.error_enums import ErrorCode
from school_common.models.error_models import ErrorDetail

from .relay_error import (
    DecodeError,
    DuplicateClaimError,
    HandlerError,
    RelayError,
    TransportError,
)


def create_error_detail(
    error_code: ErrorCode,
    message: str,
    service: str,
    operation: str,
    correlation_id: str | None = None,
    capture_stack: bool = False,
    **details: Any,
) -> ErrorDetail:
    return ErrorDetail(
        error_code=error_code,
        message=message,
        correlation_id=correlation_id,
        timestamp=datetime.now(UTC),
        service=service,
        operation=operation,
        details=details,
        stack_trace=traceback.format_exc() if capture_stack else None,
    )


def raise_transport_error(
    service: str,
    operation: str,
    channel: str,
    message: str,
    correlation_id: str | None = None,
    **additional_context: Any,
) -> NoReturn:
    raise TransportError(
        create_error_detail(
            ErrorCode.TRANSPORT_ERROR,
            message,
            service,
            operation,
            correlation_id,
            channel=channel,
            **additional_context,
        )
    )


def raise_decode_error(
    service: str,
    operation: str,
    message: str,
    correlation_id: str | None = None,
    **additional_context: Any,
) -> NoReturn:
    raise DecodeError(
        create_error_detail(
            ErrorCode.DECODE_ERROR,
            message,
            service,
            operation,
            correlation_id,
            **additional_context,
        )
    )


def raise_handler_error(
    service: str,
    operation: str,
    event_type: str,
    message: str,
    correlation_id: str | None = None,
    **additional_context: Any,
) -> NoReturn:
    raise HandlerError(
        create_error_detail(
            ErrorCode.HANDLER_ERROR,
            message,
            service,
            operation,
            correlation_id,
            event_type=event_type,
            **additional_context,
        )
    )


def raise_duplicate_claim_error(
    service: str,
    operation: str,
    message: str,
    correlation_id: str | None = None,
    **additional_context: Any,
) -> NoReturn:
    raise DuplicateClaimError(
        create_error_detail(
            ErrorCode.DUPLICATE_CLAIM_ERROR,
            message,
            service,
            operation,
            correlation_id,
            **additional_context,
        )
    )


def raise_validation_error(
    service: str,
    operation: str,
    field: str,
    message: str,
    correlation_id: str | None = None,
    **additional_context: Any,
) -> NoReturn:
    raise RelayError(
        create_error_detail(
            ErrorCode.VALIDATION_ERROR,
            message,
            service,
            operation,
            correlation_id,
            field=field,
            **additional_context,
        )
    )


def raise_resource_not_found(
    service: str,
    operation: str,
    resource_type: str,
    resource_id: str,
    correlation_id: str | None = None,
    **additional_context: Any,
) -> NoReturn:
    raise RelayError(
        create_error_detail(
            ErrorCode.RESOURCE_NOT_FOUND,
            f"{resource_type} '{resource_id}' not found",
            service,
            operation,
            correlation_id,
            resource_type=resource_type,
            resource_id=resource_id,
            **additional_context,
        )
    )
