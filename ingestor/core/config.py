from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Engine tunables are mapped onto ``IngestionConfig`` by
    ``IngestionConfig.from_settings``.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: selects the log renderer."""

    LOG_LEVEL: str = "INFO"
    """Root log level for stdlib logging."""

    # DB
    DATABASE_URL: Optional[str] = None
    """SQLAlchemy async database URL. Required; there is no fallback database."""

    # Provider
    PROVIDER_NAME: str = "paypal"
    """Provider discriminator stored on transactions and used as credential column prefix."""

    PROVIDER_API_BASE: str = "https://api-m.paypal.com"
    """Base URL of the provider's OAuth and reporting endpoints."""

    CREDENTIAL_SCHEMA: Optional[str] = None
    """Schema searched for the credential relation (None = connection default)."""

    # Window cursor
    INGEST_MAX_WINDOW_HOURS: int = 6
    """Never query further back than this many hours."""

    INGEST_OVERLAP_MINUTES: int = 120
    """Re-read this many minutes before the last stored event."""

    # Request tuning
    INGEST_PAGE_SIZE: int = 100
    INGEST_REQUEST_TIMEOUT_SECONDS: float = 20.0
    INGEST_BETWEEN_ACCOUNT_DELAY_SECONDS: float = 1.5
    INGEST_BETWEEN_PAGE_DELAY_SECONDS: float = 0.5

    # Backoff tuning
    INGEST_MAX_RATE_LIMIT_RETRIES: int = 6
    INGEST_NETWORK_MAX_ATTEMPTS: int = 3
    INGEST_BASE_BACKOFF_SECONDS: float = 5.0
    INGEST_MAX_BACKOFF_SECONDS: float = 120.0

    # Classification
    INGEST_EVENT_CODES: str = "T0006"
    """Comma separated provider event codes that are ingested."""

    INGEST_CAPTURE_EVENT_CODE: str = "T0006"
    """Event code that counts as a capture when its amount is positive."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
