"""
Middleware Package

Provides FastAPI middleware for:
- Rate limiting
- Error handling

Rate limiting usage:
    from app.middleware import limiter
    from app.enums import RateLimitType
    from app.config import settings

    @limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
    async def my_endpoint(request: Request):
        ...
"""

from app.middleware.rate_limit import get_client_identifier, limiter, setup_rate_limiting
from app.middleware.error_handling import (
    ConcurrencyConflictError,
    ErrorHandlingMiddleware,
    GuardViolationError,
    NotFoundError,
    ServiceError,
    StaleConfirmationError,
    ValidationError,
    setup_error_handling,
)

__all__ = [
    "setup_rate_limiting",
    "limiter",
    "get_client_identifier",
    "ErrorHandlingMiddleware",
    "setup_error_handling",
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "ConcurrencyConflictError",
    "GuardViolationError",
    "StaleConfirmationError",
]
