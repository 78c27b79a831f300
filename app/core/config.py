"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_TIERS: dict[str, int] = {
    "Bronze": 100,
    "Silver": 200,
    "Gold": 300,
    "Platinum": 400,
}


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )
    user_id_field: str = Field(
        "user_id",
        description="Name of the identity field in inbound request documents",
    )
    max_cas_attempts: int = Field(
        1000,
        description=(
            "Upper bound on read/insert and compare-and-swap retries per request "
            "(0 disables the bound)"
        ),
        ge=0,
    )
    activation_reason: str = Field(
        "deploy",
        description="'deploy' wipes all counters on startup, 'resume' keeps them",
        pattern="^(deploy|resume)$",
    )
    seed_demo_users: int = Field(
        0,
        description="Number of demo users to generate on startup (0 disables seeding)",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Shared state backend configuration."""

    backend: str = Field(
        "memory",
        description="Store backend: 'memory' (single process) or 'redis'",
        pattern="^(memory|redis)$",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL (used when backend=redis)",
    )
    namespace: str = Field(
        "admission",
        description="Key prefix for all documents written by this service",
    )
    config_cache_ttl_seconds: int = Field(
        1,
        description="Local cache lifetime for user and tier documents",
        ge=0,
    )
    config_cache_max_entries: int = Field(
        10000,
        description="Maximum number of cached config documents",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class ForwarderSettings(BaseSettings):
    """Downstream endpoint that receives admitted requests."""

    endpoint_url: str = Field(
        "http://localhost:3054/my-llm",
        description="URL that admitted payloads are POSTed to",
    )
    username: str | None = Field(
        None,
        description="Basic auth username for the downstream endpoint",
    )
    password: str | None = Field(
        None,
        description="Basic auth password for the downstream endpoint",
    )
    timeout_seconds: float = Field(
        30.0,
        description="Request timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="FORWARD_",
        case_sensitive=False,
    )


class TierSourceSettings(BaseSettings):
    """External source of tier limits."""

    endpoint_url: str | None = Field(
        None,
        description="URL returning a JSON object of tier name to limit (static tiers if unset)",
    )
    username: str | None = Field(
        None,
        description="Basic auth username for the tiers endpoint",
    )
    password: str | None = Field(
        None,
        description="Basic auth password for the tiers endpoint",
    )
    timeout_seconds: float = Field(
        10.0,
        description="Request timeout in seconds",
    )
    static_tiers: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_TIERS),
        description="Tier limits served when no endpoint is configured (JSON object)",
    )

    model_config = SettingsConfigDict(
        env_prefix="TIERS_",
        case_sensitive=False,
    )


class SchedulerSettings(BaseSettings):
    """Background task intervals."""

    enabled: bool = Field(
        True,
        description="Arm the tier refresh and counter reset timers on startup",
    )
    tier_refresh_interval_seconds: int = Field(
        24 * 60 * 60,
        description="Delay between tier definition refreshes",
        ge=1,
    )
    counter_reset_interval_seconds: int = Field(
        60 * 60,
        description="Length of the quota window; all counters are cleared after it",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, description="Rotate log file after this size (0 disables rotation)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation id header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    forwarder: ForwarderSettings = Field(default_factory=ForwarderSettings)
    tiers: TierSourceSettings = Field(default_factory=TierSourceSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
