"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    api_base = settings.SCORECARD_API_BASE
    api_key = settings.require_api_key()
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

from utils.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The API key has no default: it must come from the environment or .env
    and is checked with require_api_key() before the first request.
    """

    # API Configuration
    SCORECARD_API_BASE: str = Field(default="https://api.data.gov/ed/collegescorecard/v1/schools")
    COLLEGE_SCORECARD_API_KEY: str = Field(default="")
    API_TIMEOUT: int = Field(default=30)

    # Pagination
    PAGE_SIZE: int = Field(default=100, ge=1)
    FIRST_PAGE_INDEX: int = Field(default=0, ge=0)
    MAX_PAGES: int = Field(default=100, ge=1)
    PAGE_DELAY_SECONDS: float = Field(default=0.5, ge=0)
    FLUSH_EVERY_PAGES: int = Field(default=10, ge=1)

    # Retry Configuration
    FETCH_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    RATE_LIMIT_BASE_DELAY: float = Field(default=1.0, ge=0)
    RATE_LIMIT_MAX_DELAY: float = Field(default=60.0, ge=0)
    ERROR_RETRY_DELAY: float = Field(default=2.0, ge=0)

    # Filter
    FILTER_FIELD: str = Field(default="latest.programs.cip_4_digit.title")
    FILTER_VALUE: str | None = Field(default=None)
    PRUNE_ON_FILTERED_RUN: bool = Field(default=False)

    # Scheduler Configuration
    SYNC_SCHEDULE_CRON: str = Field(default="0 3 * * 0")
    # seconds; a longer run stops at the next page boundary (0 disables)
    SYNC_TIMEOUT_SECONDS: float = Field(default=1800, ge=0)

    # File System Paths
    SNAPSHOT_FILE: str = Field(default="data/filtered_data.json")
    CHECKPOINT_FILE: str = Field(default="data/state/checkpoint.json")

    # Redis Configuration
    PUBLISH_EVENTS: bool = Field(default=False)
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=10)
    REDIS_CHANNEL_SYNC: str = Field(default="snapshot.updated")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="scorecard-sync")
    APP_VERSION: str = Field(default="0.1.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    def require_api_key(self) -> str:
        """Return the API key or fail closed.

        Raises:
            ConfigError: If COLLEGE_SCORECARD_API_KEY is unset or blank
        """
        api_key = self.COLLEGE_SCORECARD_API_KEY.strip()
        if not api_key:
            raise ConfigError("COLLEGE_SCORECARD_API_KEY is not configured")
        return api_key

    @property
    def filter_value(self) -> str | None:
        """Filter value with blank strings treated as no filter."""
        if self.FILTER_VALUE is None or not self.FILTER_VALUE.strip():
            return None
        return self.FILTER_VALUE.strip()

    @property
    def prune_removed(self) -> bool:
        """Whether ids missing from this run are deleted from the snapshot."""
        return self.filter_value is None or self.PRUNE_ON_FILTERED_RUN


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
