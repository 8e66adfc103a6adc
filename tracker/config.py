from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(
        default="goal-tracker",
        validation_alias=AliasChoices("TRACKER_APP_NAME", "APP_NAME"),
    )
    database_url: str = Field(
        default="sqlite:///./data/tracker.db",
        validation_alias=AliasChoices("TRACKER_DATABASE_URL", "DATABASE_URL"),
    )
    db_echo: bool = Field(
        default=False,
        validation_alias=AliasChoices("TRACKER_DB_ECHO", "DB_ECHO"),
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("TRACKER_LOG_LEVEL", "LOG_LEVEL"),
    )
    default_timezone: str = Field(
        default="UTC",
        validation_alias=AliasChoices("TRACKER_DEFAULT_TIMEZONE", "DEFAULT_TIMEZONE"),
    )
    stats_retry_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("TRACKER_STATS_RETRY_ATTEMPTS", "STATS_RETRY_ATTEMPTS"),
    )
    max_tasks_per_day_per_goal: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices("TRACKER_MAX_TASKS_PER_DAY_PER_GOAL", "MAX_TASKS_PER_DAY_PER_GOAL"),
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
