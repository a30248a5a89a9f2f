"""
Integration Test Fixtures

Provides a real async engine and sessions for the progression tables.

IMPORTANT: Tests use the TEST database only (POSTGRES_TEST_* env vars, falling
back to POSTGRES_*). Tables are dropped and recreated once per run and
truncated around every test. A safety check refuses database names that look
like production.

When PostgreSQL is not reachable the tests are skipped rather than failed, so
the unit suite stays runnable on a laptop without Docker.
"""

import os
from pathlib import Path
from typing import AsyncGenerator, Callable
from urllib.parse import quote_plus

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Load .env before reading POSTGRES_TEST_* variables
_env_file = Path(__file__).parent.parent.parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

pytestmark = pytest.mark.integration

PROGRESSION_TABLES = [
    "stack_tests",
    "card_ratings",
    "stack_mastery",
    "freeze_states",
    "streak_ledgers",
    "user_progress",
]

# Tables are recreated once per test run
_tables_created = False


def get_test_db_config() -> dict:
    """Priority: POSTGRES_TEST_* > POSTGRES_* > defaults."""
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": os.environ.get("POSTGRES_PORT", "5432"),
        "user": os.environ.get(
            "POSTGRES_TEST_USER", os.environ.get("POSTGRES_USER", "testuser")
        ),
        "password": os.environ.get(
            "POSTGRES_TEST_PASSWORD", os.environ.get("POSTGRES_PASSWORD", "testpass")
        ),
        "db": os.environ.get(
            "POSTGRES_TEST_DB", os.environ.get("POSTGRES_DB", "testdb")
        ),
    }


def get_test_db_url() -> str:
    config = get_test_db_config()
    password = quote_plus(config["password"])
    return (
        f"postgresql+asyncpg://{config['user']}:{password}"
        f"@{config['host']}:{config['port']}/{config['db']}"
    )


@pytest.fixture(scope="session", autouse=True)
def verify_test_database():
    """Fail fast if the configured database looks like production."""
    if os.environ.get("ALLOW_PROD_DB_TESTS", "").lower() in ("1", "true", "yes"):
        return

    config = get_test_db_config()
    for indicator in ("streakengine", "prod", "production"):
        assert indicator not in config["db"].lower(), (
            f"SAFETY CHECK FAILED: Database name '{config['db']}' looks like production! "
            "Set POSTGRES_TEST_DB or ALLOW_PROD_DB_TESTS=1."
        )


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Fresh engine per test (one event loop per test) with empty progression tables.
    """
    global _tables_created
    from app.db.base import Base

    engine = create_async_engine(get_test_db_url(), echo=False)
    try:
        async with engine.begin() as conn:
            if not _tables_created:
                await conn.run_sync(Base.metadata.drop_all)
                await conn.run_sync(Base.metadata.create_all)
                _tables_created = True
            await conn.execute(
                text(f"TRUNCATE TABLE {', '.join(PROGRESSION_TABLES)} CASCADE")
            )
    except (OSError, DBAPIError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not available: {e}")

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> Callable[[], AsyncSession]:
    """Session factory configured like app.db.base.async_session_maker."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
