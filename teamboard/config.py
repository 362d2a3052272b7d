"""
Configuration and settings for the teamboard service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI + Socket.IO service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Listener
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(
        default=None, validation_alias="DATABASE_URL"
    )
    store_connect_timeout: float = Field(
        default=10.0, validation_alias="TEAMBOARD_STORE_CONNECT_TIMEOUT"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="TEAMBOARD_USE_IN_MEMORY_BACKENDS"
    )

    # Reject priority/status/timeUnit values outside their enumerations.
    # Turn off to accept arbitrary strings like the legacy server did.
    validate_task_fields: bool = Field(
        default=True, validation_alias="TEAMBOARD_VALIDATE_TASK_FIELDS"
    )

    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        validation_alias="TEAMBOARD_CORS_ORIGINS",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
