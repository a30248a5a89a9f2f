"""
Error Handling Middleware

Every failure leaves the API in one JSON shape (see `app.models.base.ErrorDetail`):

    {"error": "stale_confirmation", "message": "...", "error_id": "1a2b3c4d",
     "details": null, "timestamp": "..."}

`error_id` is an 8-character correlation id that also appears in the log line.
`details` is only populated when DEBUG is on.

Error taxonomy:
    - ValidationError (422) / NotFoundError (404): rejected before any mutation
    - ConcurrencyConflictError (409): optimistic version mismatch that survived
      every recomputation retry
    - GuardViolationError (409): a streak-impacting mutation attempted outside
      the check/confirm path
    - StaleConfirmationError (409): the state changed between check and confirm

ServiceError subclasses are rendered by an exception handler inside the
routing layer. Anything else reaches ErrorHandlingMiddleware and becomes a
sanitized 500.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ServiceError(Exception):
    """
    Base exception for progression errors.

    Example:
        raise ServiceError("Pending action store unavailable", status_code=503)
    """

    status_code: int = 500
    error_code: str = "service_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details


class ValidationError(ServiceError):
    """Rating outside 1-5, score outside 0-100, unknown timezone, wrong user."""

    status_code = 422
    error_code = "validation_error"


class NotFoundError(ServiceError):
    """Unknown stack, card or pending action."""

    status_code = 404
    error_code = "not_found"


class ConcurrencyConflictError(ServiceError):
    """Version check kept failing after every recomputation retry."""

    status_code = 409
    error_code = "concurrency_conflict"


class GuardViolationError(ServiceError):
    """
    Streak-impacting mutation without an explicit, informed confirmation.

    Also raised for a confirmation that was already consumed or cancelled.
    """

    status_code = 409
    error_code = "confirmation_required"


class StaleConfirmationError(GuardViolationError):
    """The impact report no longer matches the stored state; check again."""

    error_code = "stale_confirmation"


# =============================================================================
# Rendering
# =============================================================================


def _new_error_id() -> str:
    return uuid4().hex[:8]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def render_service_error(exc: ServiceError, request: Request, debug: bool) -> JSONResponse:
    """Log a ServiceError with a fresh correlation id and render it as JSON."""
    error_id = _new_error_id()
    # Client mistakes are expected traffic; only server-side failures are errors
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"[{error_id}] {exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={"error_id": error_id, "error_code": exc.error_code, "details": exc.details},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "error_id": error_id,
            "details": exc.details if debug else None,
            "timestamp": _timestamp(),
        },
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns unhandled exceptions into a sanitized 500 with a correlation id."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except ServiceError as e:
            return render_service_error(e, request, self.debug)
        except Exception as e:
            error_id = _new_error_id()
            trace = traceback.format_exc()
            logger.error(
                f"[{error_id}] Unhandled error on {request.method} {request.url.path}: "
                f"{type(e).__name__}: {e}",
                extra={"error_id": error_id, "traceback": trace},
            )

            details = None
            if self.debug:
                details = {"exception": type(e).__name__, "message": str(e), "traceback": trace}

            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_server_error",
                    "message": "An unexpected error occurred",
                    "error_id": error_id,
                    "details": details,
                    "timestamp": _timestamp(),
                },
            )


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """Register the ServiceError handler and the catch-all middleware."""

    async def service_error_handler(request: Request, exc: ServiceError):
        return render_service_error(exc, request, debug)

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")
