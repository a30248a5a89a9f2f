"""
Database Base Configuration

Async SQLAlchemy engine and session factory for the progression tables.

Transaction boundaries belong to ProgressionService: every mutating operation
commits (or rolls back and retries) inside `ProgressionService._atomic`, so the
request-scoped session handed out by `get_db` never commits on its own.

Usage:
    from app.db.base import async_session_maker

    async with async_session_maker() as session:
        service = ProgressionService(session)
        await service.sweep_all_users()
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings, yaml_config


# Pool sizing comes from config/default.yaml when present
db_config: dict[str, Any] = yaml_config.get("database", {})

engine = create_async_engine(
    settings.POSTGRES_URL,
    pool_size=db_config.get("pool_size", 5),
    max_overflow=db_config.get("max_overflow", 10),
    pool_timeout=db_config.get("pool_timeout", 30),
    pool_pre_ping=True,
    echo=settings.DEBUG,
)

# expire_on_commit=False keeps loaded rows usable for building the response
# snapshot after the transaction has been committed
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for the progression ORM models."""


# Registers the models on Base.metadata; must follow the Base definition
from app.db import models  # noqa: F401, E402


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Anything left uncommitted when the request fails is rolled back.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Create missing progression tables.

    Used in development on startup; deployments run the Alembic revision in
    `alembic/versions` instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
