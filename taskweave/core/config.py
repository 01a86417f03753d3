"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    taskweave_database_url: str = Field(
        default="sqlite+aiosqlite:///./taskweave.db",
        description="Database URL for durable task records",
    )
    taskweave_persist: bool = Field(
        default=True,
        description="Persist task records to the database",
    )

    # Logging
    taskweave_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    taskweave_log_dir: str | None = Field(
        default="logs",
        description="Directory for rotating log files (None disables file logging)",
    )
    taskweave_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Scheduling
    taskweave_concurrency: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum number of tasks executed in one wave",
    )
    taskweave_max_retries: int | None = Field(
        default=None,
        ge=0,
        description="Retry override applied to every task (None uses each task's max_retries)",
    )
    taskweave_retry_backoff: float = Field(
        default=0.0,
        ge=0.0,
        description="Initial delay between retry attempts in seconds",
    )

    @property
    def database_url_async(self) -> str:
        """Get async database URL (aiosqlite / asyncpg driver)."""
        url = self.taskweave_database_url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        """Check whether the configured database is SQLite."""
        return self.database_url_async.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.taskweave_concurrency
        5
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
