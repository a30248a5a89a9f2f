"""
Base Models for Progression API Requests and Responses

Every request body derives from StrictRequest, so a misspelled field such as
`ratng` or an unacknowledged flag is rejected with 422 before the guard or the
streak ledger ever sees it. Responses derive from StrictResponse and may be
built straight from ORM rows.

Usage:
    class RatingRequest(StrictRequest):
        rating: int

    class StackStateResponse(StrictResponse):
        stack_id: str
        status: StackStatus
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class StrictRequest(BaseModel):
    """
    Base model for request bodies.

    - extra="forbid": unknown fields raise 422
    - str_strip_whitespace=True: identifiers and timezone names are trimmed
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
        from_attributes=True,
    )


class StrictResponse(BaseModel):
    """
    Base model for response bodies.

    Extra attributes on the source object (ORM columns such as `version`)
    are ignored rather than rejected.
    """

    model_config = ConfigDict(
        extra="ignore",
        validate_default=True,
        from_attributes=True,
    )


class ErrorDetail(StrictResponse):
    """
    Error body rendered by the error handling middleware.

    Documented on the progression router so clients can rely on `error`
    codes such as `confirmation_required` or `stale_confirmation`.
    """

    error: str
    message: str
    error_id: str  # Correlation ID for log lookup
    details: Optional[dict] = None
    timestamp: datetime
