"""
Configuration for the Task Completion API.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    API configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API Server
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external)",
        alias="HOST",
    )
    port: int = Field(default=3000, description="API port", alias="PORT")
    debug: bool = Field(default=False, description="Enable debug mode (uvicorn reload)")
    log_level: str = Field(default="INFO", description="Root log level")
    allowed_origins: list[str] = Field(
        default=["*"],
        description="CORS allowed origins"
    )

    # Rate limiting
    # Uses `limits` notation, e.g. "50/second" or "100 per minute".
    rate_limit: str = Field(
        default="50/second",
        description="Request rate ceiling for /api routes",
        alias="RATE_LIMIT",
    )
    rate_limit_per_client: bool = Field(
        default=False,
        description="If true, bucket per client host instead of one global bucket",
        alias="RATE_LIMIT_PER_CLIENT",
    )

    # Storage
    # Unset: completions live in process memory and vanish on restart.
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL (sqlite:///./tasks.db or postgresql://...)",
        alias="DATABASE_URL",
    )

    # Timestamp plausibility window
    max_timestamp_age_seconds: int = Field(
        default=365 * 24 * 60 * 60,
        gt=0,
        description="Oldest accepted completion timestamp, relative to now",
    )
    max_clock_skew_seconds: int = Field(
        default=300,
        ge=0,
        description="How far in the future a completion timestamp may be",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
