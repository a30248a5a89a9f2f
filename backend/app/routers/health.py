"""
Health Check Endpoints

Endpoints:
- GET /api/health - Liveness
- GET /api/health/detailed - PostgreSQL, Redis and sweep scheduler status
- GET /api/health/ready - Readiness check

Redis is a hard dependency: without it no pending confirmation can be stored,
so every guarded downgrade or deletion would fail.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.base import get_db
from app.db.redis import get_redis
from app.services.scheduler import get_scheduled_jobs, scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


async def _check_postgres(db: AsyncSession) -> dict:
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        logger.warning(f"PostgreSQL health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


async def _check_redis() -> dict:
    try:
        client = await get_redis()
        await client.ping()
        return {
            "status": "healthy",
            "pending_action_ttl_seconds": settings.PENDING_ACTION_TTL_SECONDS,
        }
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}


def _check_scheduler() -> dict:
    # A disabled sweep is a deployment choice, not a failure
    if not settings.SCHEDULER_ENABLED:
        return {"status": "disabled"}
    if scheduler.running:
        return {"status": "healthy", "jobs": get_scheduled_jobs()}
    return {"status": "unhealthy", "error": "Scheduler not running"}


@router.get("")
async def health_check():
    """Liveness check."""
    return {"status": "healthy", "service": settings.APP_NAME}


@router.get("/detailed")
async def detailed_health_check(db: AsyncSession = Depends(get_db)):
    """Status of every dependency; `degraded` if any is unhealthy."""
    dependencies = {
        "postgres": await _check_postgres(db),
        "redis": await _check_redis(),
        "scheduler": _check_scheduler(),
    }
    degraded = any(dep["status"] == "unhealthy" for dep in dependencies.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "service": settings.APP_NAME,
        "dependencies": dependencies,
    }


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Ready only when both PostgreSQL and Redis answer."""
    postgres = await _check_postgres(db)
    redis = await _check_redis()
    if postgres["status"] == "healthy" and redis["status"] == "healthy":
        return {"ready": True}
    return {
        "ready": False,
        "error": postgres.get("error") or redis.get("error"),
    }
