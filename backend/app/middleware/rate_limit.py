"""
Rate Limiting Middleware

Per-user request limits for the progression API using SlowAPI.

Usage:
    from app.middleware.rate_limit import limiter
    from app.enums import RateLimitType
    from app.config import settings

    @router.post("/users/{user_id}/stacks/{stack_id}/cards/{card_id}/rating")
    @limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
    async def submit_rating(request: Request, ...):
        ...

Limit categories (from settings):
- DEFAULT: progress and stack reads
- MUTATION: ratings, test results, deletion checks, confirmations
- BATCH: the manual sweep
"""

import logging

from fastapi import FastAPI, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from app.config import settings

logger = logging.getLogger(__name__)


def get_client_identifier(request: Request) -> str:
    """
    Rate limit key for a request.

    User-scoped routes are limited per user id so one client hammering the
    confirm endpoint cannot starve others behind the same proxy. Everything
    else falls back to the first X-Forwarded-For hop or the peer address.
    """
    user_id = request.path_params.get("user_id")
    if user_id:
        return f"user:{user_id}"

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    return get_remote_address(request)


limiter = Limiter(key_func=get_client_identifier, enabled=settings.RATE_LIMIT_ENABLED)


def setup_rate_limiting(app: FastAPI, enabled: bool = True) -> None:
    """Attach the limiter to the app, installing the middleware only when enabled."""
    # Decorated endpoints look the limiter up on app.state either way
    app.state.limiter = limiter

    if not enabled:
        limiter.enabled = False
        logger.info("Rate limiting disabled")
        return

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info(
        f"Rate limiting enabled (mutations: {settings.RATE_LIMIT_MUTATION}, "
        f"reads: {settings.RATE_LIMIT_DEFAULT})"
    )
