"""
Configuration management for Letterboxd Trakt Sync.
Loaded from environment variables (and a .env file when present).
"""

import os
import secrets
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class SyncConfig(BaseModel):
    """Configuration for the sync service."""

    # Trakt settings
    trakt_client_id: Optional[str] = Field(default=None, description="Trakt application client id")
    trakt_access_token: Optional[str] = Field(default=None, description="Trakt OAuth bearer token")
    trakt_api_url: str = Field(default="https://api.trakt.tv", description="Trakt API base URL")

    # Rate limiting
    min_request_interval_ms: int = Field(default=3000, ge=0, description="Minimum spacing between Trakt calls")
    batch_size: int = Field(default=10, ge=0, description="Calls per batch before a cooldown, 0 disables")
    batch_cooldown_ms: int = Field(default=10000, ge=0, description="Cooldown after each batch")
    max_throttle_retries: int = Field(default=3, ge=0, description="Retries after a 429 response")
    backoff_base_seconds: float = Field(default=4.0, ge=0, description="First backoff delay, doubled per retry")
    request_timeout: int = Field(default=30, gt=0, description="HTTP timeout in seconds")

    # Sync behaviour
    resubmit_existing: bool = Field(
        default=False,
        description="Write reselected already-present records to Trakt as rewatches",
    )

    # Application settings
    database_url: str = Field(
        default="sqlite:///data/letterboxd-trakt.db",
        description="Database connection URL"
    )
    secret_key: str = Field(
        default_factory=lambda: os.getenv("SECRET_KEY", secrets.token_hex(32)),
        description="Secret key for Flask sessions"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    port: int = Field(default=5000, description="HTTP port for the web API")


def get_config_from_env() -> SyncConfig:
    """Load configuration from environment variables."""
    return SyncConfig(
        trakt_client_id=os.getenv("TRAKT_CLIENT_ID"),
        trakt_access_token=os.getenv("TRAKT_ACCESS_TOKEN"),
        trakt_api_url=os.getenv("TRAKT_API_URL", "https://api.trakt.tv"),
        min_request_interval_ms=int(os.getenv("TRAKT_MIN_REQUEST_INTERVAL_MS", "3000")),
        batch_size=int(os.getenv("TRAKT_BATCH_SIZE", "10")),
        batch_cooldown_ms=int(os.getenv("TRAKT_BATCH_COOLDOWN_MS", "10000")),
        max_throttle_retries=int(os.getenv("TRAKT_MAX_THROTTLE_RETRIES", "3")),
        backoff_base_seconds=float(os.getenv("TRAKT_BACKOFF_BASE_SECONDS", "4")),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30")),
        resubmit_existing=_env_bool("RESUBMIT_EXISTING"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/letterboxd-trakt.db"),
        secret_key=os.getenv("SECRET_KEY", secrets.token_hex(32)),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        port=int(os.getenv("PORT", "5000")),
    )


def is_configured(config: SyncConfig) -> bool:
    """Check if the minimum required configuration is present."""
    return bool(config.trakt_client_id)
