"""Error handling utilities for the school platform event relay."""

from .factories import (
    create_error_detail,
    raise_decode_error,
    raise_duplicate_claim_error,
    raise_handler_error,
    raise_resource_not_found,
    raise_transport_error,
    raise_validation_error,
)
from .relay_error import (
    DecodeError,
    DuplicateClaimError,
    HandlerError,
    RelayError,
    TransportError,
)

__all__ = [
    "RelayError",
    "TransportError",
    "DecodeError",
    "HandlerError",
    "DuplicateClaimError",
    "create_error_detail",
    "raise_transport_error",
    "raise_decode_error",
    "raise_handler_error",
    "raise_duplicate_claim_error",
    "raise_validation_error",
    "raise_resource_not_found",
]
