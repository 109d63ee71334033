"""
Base reporting API client interface.

Defines the contract that all provider reporting clients must implement.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ingestor.ingestion.window import Window

RawRecord = Dict[str, Any]


class BaseReportingClient(ABC):
    """
    Abstract base class for provider reporting clients.

    A client owns its ``httpx.AsyncClient`` unless one is injected, in which
    case the caller is responsible for closing it.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL for the provider API
            timeout: Request timeout in seconds, applied to every call
            http_client: Pre-built client (tests inject a MockTransport here)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json"},
        )

    @abstractmethod
    async def get_access_token(self, client_id: str, client_secret: str) -> str:
        """
        Exchange client credentials for a bearer token.

        Raises:
            AuthError: If the provider rejects the exchange
            NetworkError: If the token endpoint cannot be reached
        """

    @abstractmethod
    async def fetch_transactions(self, access_token: str, window: Window) -> List[RawRecord]:
        """
        Fetch every record reported inside ``window``, across all pages.

        Raises:
            NetworkError: If transport failures outlast the retry budget
            RateLimitExhausted: If 429 responses outlast the retry budget
            ApiError: On any other error response
        """

    @abstractmethod
    def get_source_name(self) -> str:
        """Provider identifier (e.g., 'paypal')."""

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
