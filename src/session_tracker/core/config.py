"""
Configuration management for Session Tracker.

Uses Pydantic settings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables, e.g.
    STATS_API_KEY="..." or POLLING_INTERVAL_SECONDS=90.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Application Metadata
    # ==========================================================================
    app_name: str = "Session Tracker"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", description="development, staging, production")
    log_level: str = Field(default="INFO", description="Root logging level for the CLI")

    # ==========================================================================
    # Stats Provider
    # ==========================================================================
    stats_api_base_url: Optional[str] = Field(
        default="https://api.tracker.gg/api/v2/rocket-league/standard/profile",
        description="Base URL for player profile and match history lookups",
    )
    stats_api_key: Optional[str] = Field(
        default=None,
        description="Stats provider API key (required for any provider call)",
    )
    stats_api_timeout: float = Field(default=20.0, gt=0)

    # ==========================================================================
    # Polling
    # ==========================================================================
    polling_interval_seconds: int = Field(default=60, ge=1)
    default_mode: str = Field(default="2v2", description="solo, 2v2, 3v3, 4v4")
    poll_retries: int = Field(default=3, ge=0)
    poll_base_delay_ms: int = Field(default=500, ge=0)
    manual_capture_retries: int = Field(default=0, ge=0)

    # ==========================================================================
    # Rate Limiting (provider side)
    # ==========================================================================
    rate_limit_fallback_ms: int = Field(
        default=60_000,
        ge=0,
        description="Cooldown applied when the provider gives no Retry-After hint",
    )
    rate_limit_max_ms: int = Field(
        default=600_000,
        ge=0,
        description="Upper bound on any single cooldown window",
    )

    # ==========================================================================
    # Storage / Observability
    # ==========================================================================
    polling_log_capacity: int = Field(default=500, ge=1)
    database_path: str = Field(default="session_tracker.sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
