"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all poller knobs with validation.

Usage:
    from utils.config import settings

    redis_url = settings.REDIS_URL
    interval = settings.RECONCILE_INTERVAL_SECONDS
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=10, ge=1)
    REDIS_CHANNEL_INGESTION: str = Field(default="feedback.ingestion")

    # Database Configuration (polling configs)
    SQLITE_PATH: str = Field(default="/app/data/db/app.db")

    # Scheduler Configuration
    RECONCILE_INTERVAL_SECONDS: int = Field(default=30, ge=1)
    MIN_POLL_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    SHUTDOWN_GRACE_SECONDS: float = Field(default=30.0, ge=0)

    # Fetch Behaviors
    GENERIC_MAX_PAGES: int = Field(default=10, ge=1)
    INTER_PAGE_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    DISCOURSE_MAX_SEARCH_PAGES: int = Field(default=5, ge=1)
    DISCOURSE_TOPIC_DELAY_SECONDS: float = Field(default=0.5, ge=0)
    DEFAULT_LOOKBACK_HOURS: int = Field(default=24, ge=1)

    # State & Rate Limiting
    STATE_TTL_SECONDS: int = Field(default=30 * 24 * 60 * 60, ge=1)
    RATE_LIMIT_TTL_MULTIPLIER: int = Field(default=2, ge=1)

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    HTTP_USER_AGENT: str = Field(default="Feedback-Ingestion-Poller/1.0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="feedback-poller")
    APP_VERSION: str = Field(default="0.1.0")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
