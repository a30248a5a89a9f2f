"""
FastAPI Dependencies

API key authentication for the progression router.
"""

import hmac
import logging

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import APIKeyHeader

from app.config import settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    header_key: str | None = Depends(api_key_header),
    query_key: str | None = Query(None, alias="api_key"),
) -> str:
    """
    Check the caller's key against PROGRESSION_API_KEY.

    The key is read from the X-API-Key header, falling back to the `api_key`
    query parameter for curl sessions. An empty PROGRESSION_API_KEY disables
    the check (development mode).

    Raises:
        HTTPException: 401 if the key is missing or wrong.
    """
    expected = settings.PROGRESSION_API_KEY
    if not expected:
        return "dev-mode"

    provided = header_key or query_key
    if not provided:
        raise _unauthorized("Missing API key. Provide X-API-Key header.")

    if not hmac.compare_digest(provided, expected):
        logger.warning("Rejected progression request with an invalid API key")
        raise _unauthorized("Invalid API key")

    return provided


RequireAPIKey = Depends(verify_api_key)
