"""
school_common.error_enums - Centralized error code definitions.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Event relay errors
    TRANSPORT_ERROR = "TRANSPORT_ERROR"  # Broker unreachable or timed out
    DECODE_ERROR = "DECODE_ERROR"  # Malformed envelope, never retried
    HANDLER_ERROR = "HANDLER_ERROR"  # Domain logic failure, retried up to the cap
    DUPLICATE_CLAIM_ERROR = "DUPLICATE_CLAIM_ERROR"  # Idempotency store unreachable
