"""
Ingestion engine configuration.

Defines the window cursor, request pacing, retry policies and
classification settings used by one polling run.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from ingestor.core.config import Settings


class RetryPolicy(BaseModel):
    """Exponential backoff with symmetric jitter."""

    max_attempts: int = Field(
        default=3, ge=1, description="Maximum attempts including the first"
    )
    base_delay: float = Field(
        default=5.0, ge=0, description="Delay before the first retry in seconds"
    )
    max_delay: float = Field(default=120.0, ge=0, description="Upper bound in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: float = Field(
        default=0.2,
        ge=0.0,
        lt=1.0,
        description="Fractional jitter; 0.2 spreads each delay over ±20%",
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> RetryPolicy:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class IngestionConfig(BaseModel):
    """Main ingestion engine configuration."""

    provider: str = Field(default="paypal", min_length=1, description="Provider name")
    api_base_url: str = Field(
        default="https://api-m.paypal.com", description="Provider API base URL"
    )
    credential_schema: Optional[str] = Field(
        default=None, description="Schema holding the credential relation"
    )

    # Window cursor
    max_window_hours: int = Field(
        default=6, ge=1, description="Hours of history a run may query at most"
    )
    overlap_minutes: int = Field(
        default=120, ge=0, description="Minutes re-read before the last stored event"
    )

    # Request pacing
    page_size: int = Field(default=100, ge=1, le=500, description="Records per page")
    request_timeout: float = Field(
        default=20.0, gt=0, description="Per-request timeout in seconds"
    )
    between_account_delay: float = Field(
        default=1.5, ge=0, description="Seconds slept after every account"
    )
    between_page_delay: float = Field(
        default=0.5, ge=0, description="Seconds slept between successful pages"
    )

    # Retry and resilience
    rate_limit_backoff: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_attempts=7),
        description="Backoff for 429 responses; allows max_attempts - 1 retries per page",
    )
    network_retry: RetryPolicy = Field(default_factory=RetryPolicy)

    # Classification
    event_codes: frozenset[str] = Field(
        default=frozenset({"T0006"}), description="Event codes that are ingested"
    )
    capture_event_code: str = Field(
        default="T0006", description="Event code counted as inflow when amount > 0"
    )

    @property
    def max_rate_limit_retries(self) -> int:
        """429 responses tolerated per page before the fetch gives up."""
        return self.rate_limit_backoff.max_attempts - 1

    def get_max_window(self) -> timedelta:
        """Maximum lookback as timedelta."""
        return timedelta(hours=self.max_window_hours)

    def get_overlap(self) -> timedelta:
        """Cursor overlap as timedelta."""
        return timedelta(minutes=self.overlap_minutes)

    @classmethod
    def from_settings(cls, settings: Settings) -> IngestionConfig:
        """Create IngestionConfig from app settings."""
        backoff = RetryPolicy(
            max_attempts=settings.INGEST_MAX_RATE_LIMIT_RETRIES + 1,
            base_delay=settings.INGEST_BASE_BACKOFF_SECONDS,
            max_delay=settings.INGEST_MAX_BACKOFF_SECONDS,
        )
        network = backoff.model_copy(
            update={"max_attempts": settings.INGEST_NETWORK_MAX_ATTEMPTS}
        )
        codes = frozenset(
            code.strip()
            for code in settings.INGEST_EVENT_CODES.split(",")
            if code.strip()
        )

        return cls(
            provider=settings.PROVIDER_NAME,
            api_base_url=settings.PROVIDER_API_BASE,
            credential_schema=settings.CREDENTIAL_SCHEMA,
            max_window_hours=settings.INGEST_MAX_WINDOW_HOURS,
            overlap_minutes=settings.INGEST_OVERLAP_MINUTES,
            page_size=settings.INGEST_PAGE_SIZE,
            request_timeout=settings.INGEST_REQUEST_TIMEOUT_SECONDS,
            between_account_delay=settings.INGEST_BETWEEN_ACCOUNT_DELAY_SECONDS,
            between_page_delay=settings.INGEST_BETWEEN_PAGE_DELAY_SECONDS,
            rate_limit_backoff=backoff,
            network_retry=network,
            event_codes=codes,
            capture_event_code=settings.INGEST_CAPTURE_EVENT_CODE,
        )
