"""
Standardized, PURE data models for errors raised by the event relay.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from school_common.error_enums import ErrorCode


class ErrorDetail(BaseModel):
    """
    The canonical, PURE data model for an error in the school platform.
    This model contains only data fields and no behavior.
    """

    error_code: ErrorCode
    message: str
    correlation_id: Optional[str] = None
    timestamp: datetime
    service: str
    operation: str
    details: dict[str, Any] = Field(default_factory=dict)
    stack_trace: Optional[str] = None

    model_config = ConfigDict(frozen=True)
