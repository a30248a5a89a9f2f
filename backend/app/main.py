"""
Streak Engine API

FastAPI application for the streak and mastery progression engine.

Startup:
    - Configures logging
    - Creates missing tables in DEBUG mode (use Alembic migrations otherwise)
    - Starts the periodic streak sweep (APScheduler)

Shutdown:
    - Stops the scheduler
    - Closes the Redis pool and disposes the database engine
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.base import engine, init_db
from app.db.redis import close_redis_pool
from app.middleware import setup_error_handling, setup_rate_limiting
from app.routers import health_router, progression_router
from app.services.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME}")
    if settings.DEBUG:
        await init_db()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    if settings.SCHEDULER_ENABLED:
        stop_scheduler()
    await close_redis_pool()
    await engine.dispose()
    logger.info(f"{settings.APP_NAME} stopped")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and routers."""
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_error_handling(app, debug=settings.DEBUG)
    setup_rate_limiting(app, enabled=settings.RATE_LIMIT_ENABLED)

    app.include_router(health_router.router)
    app.include_router(progression_router.router)

    @app.get("/")
    async def root():
        return {"message": settings.APP_NAME}

    return app


app = create_app()
