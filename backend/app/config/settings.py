"""
Application Configuration

This module provides type-safe configuration loading using Pydantic settings.
Environment variables are loaded from .env file and validated.

Usage:
    from app.config import settings

    # Access settings
    db_url = settings.POSTGRES_URL
    requirement = settings.STREAK_DAILY_REQUIREMENT
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings

from app.enums.api import RateLimitType


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Streak Engine"
    DEBUG: bool = False
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "streakengine"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "streakengine"

    @property
    def POSTGRES_URL(self) -> str:
        """Async PostgreSQL connection URL."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def POSTGRES_URL_SYNC(self) -> str:
        """Sync PostgreSQL connection URL for Alembic migrations."""
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis (pending confirmation actions)
    REDIS_URL: str = "redis://localhost:6379/0"

    # API key for the progression endpoints. Empty disables the check (dev mode).
    PROGRESSION_API_KEY: str = ""

    # Streak policy
    STREAK_DAILY_REQUIREMENT: int = 5
    MASTERY_RATING_THRESHOLD: int = 4
    GRACE_PERIOD_HOURS: float = 2.0
    DEFAULT_TIMEZONE: str = "UTC"

    # Test deadline = mastery time + base + per_card * cards, capped at max
    TEST_DEADLINE_BASE_HOURS: float = 24.0
    TEST_DEADLINE_PER_CARD_HOURS: float = 4.0
    TEST_DEADLINE_MAX_DAYS: float = 10.0

    # Concurrency
    STREAK_MUTATION_MAX_RETRIES: int = 5

    # Two-phase confirmations expire (and are abandoned) after this many seconds
    PENDING_ACTION_TTL_SECONDS: int = 900

    # Periodic rollover/freeze sweep
    SCHEDULER_ENABLED: bool = True
    STREAK_SWEEP_INTERVAL_MINUTES: int = 60

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_MUTATION: str = "30/minute"
    RATE_LIMIT_BATCH: str = "5/minute"

    def get_rate_limit(self, rate_limit_type: RateLimitType) -> str:
        """Return the rate limit string for an endpoint category."""
        limits = {
            RateLimitType.DEFAULT: self.RATE_LIMIT_DEFAULT,
            RateLimitType.MUTATION: self.RATE_LIMIT_MUTATION,
            RateLimitType.BATCH: self.RATE_LIMIT_BATCH,
        }
        return limits.get(rate_limit_type, self.RATE_LIMIT_DEFAULT)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load application configuration from config/default.yaml."""
    config_path = Path(__file__).parent.parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()
