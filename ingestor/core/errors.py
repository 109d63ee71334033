"""
Error taxonomy for the ingestion engine.

Every error carries a ``FailureKind`` assigned where the failure happens,
so the orchestrator can report the cause without inspecting messages.
"""

from enum import Enum
from typing import Optional

# Provider error bodies are embedded in messages up to this many characters.
MAX_BODY_EXCERPT = 350


class FailureKind(str, Enum):
    """Cause categories used for per-account reporting."""

    CONFIGURATION = "configuration"
    BAD_CREDENTIALS = "bad_credentials"
    AUTH = "auth"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    API = "api"
    OTHER = "other"


def excerpt(text: Optional[str], limit: int = MAX_BODY_EXCERPT) -> str:
    """Trim a response body for inclusion in an error message."""
    if not text:
        return ""
    text = " ".join(text.split())
    return text[:limit]


class IngestionError(Exception):
    """Base exception for ingestion failures."""

    kind: FailureKind = FailureKind.OTHER

    def __init__(self, message: str, kind: Optional[FailureKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ConfigurationError(IngestionError):
    """Raised when the run cannot start (missing DSN, no credential relation)."""

    kind = FailureKind.CONFIGURATION


class AuthError(IngestionError):
    """Raised when the OAuth client-credentials exchange fails."""

    kind = FailureKind.AUTH

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        kind = (
            FailureKind.BAD_CREDENTIALS
            if reason == "invalid_client"
            else FailureKind.AUTH
        )
        super().__init__(message, kind)
        self.reason = reason
        self.status_code = status_code

    @property
    def is_invalid_client(self) -> bool:
        return self.kind is FailureKind.BAD_CREDENTIALS


class RateLimitExhausted(IngestionError):
    """Raised when a page keeps returning 429 past the retry budget."""

    kind = FailureKind.RATE_LIMITED

    def __init__(self, message: str, page: int, retries: int):
        super().__init__(message)
        self.page = page
        self.retries = retries


class NetworkError(IngestionError):
    """Raised when transport failures outlast the retry budget."""

    kind = FailureKind.NETWORK


class ApiError(IngestionError):
    """Raised for non-429 error responses from the reporting API."""

    kind = FailureKind.API

    def __init__(self, message: str, status_code: int, body: str = ""):
        insufficient_scope = (
            status_code == 403
            or "NOT_AUTHORIZED" in body
            or "insufficient permissions" in body.lower()
        )
        super().__init__(
            message,
            FailureKind.INSUFFICIENT_SCOPE if insufficient_scope else FailureKind.API,
        )
        self.status_code = status_code
        self.body = body
