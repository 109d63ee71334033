"""
PayPal reporting client.

Obtains OAuth2 client-credentials tokens and pages through the
Transaction Search API (``/v1/reporting/transactions``) with
rate-limit aware backoff.
"""

import asyncio
import random
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ingestor.core.errors import (
    ApiError,
    AuthError,
    NetworkError,
    RateLimitExhausted,
    excerpt,
)
from ingestor.ingestion.clients.base import BaseReportingClient, RawRecord
from ingestor.ingestion.config import IngestionConfig
from ingestor.ingestion.retry import (
    Sleep,
    backoff_delay,
    parse_retry_after,
    retry_with_backoff,
)
from ingestor.ingestion.window import Window

logger = structlog.get_logger()

TOKEN_PATH = "/v1/oauth2/token"
REPORTING_PATH = "/v1/reporting/transactions"


class PayPalReportingClient(BaseReportingClient):
    """Reporting client for PayPal's Transaction Search API."""

    def __init__(
        self,
        config: IngestionConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Ingestion configuration (base URL, paging, backoff)
            http_client: Optional pre-built httpx client
            sleep: Awaitable used for every wait (backoff and page pacing)
            rng: Random source for backoff jitter
        """
        super().__init__(config.api_base_url, config.request_timeout, http_client)
        self.config = config
        self._sleep = sleep
        self._rng = rng or random.Random()

    def get_source_name(self) -> str:
        return self.config.provider

    async def get_access_token(self, client_id: str, client_secret: str) -> str:
        try:
            response = await self._http.post(
                TOKEN_PATH,
                auth=(client_id, client_secret),
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            raise NetworkError(
                f"OAuth token endpoint unreachable: {type(e).__name__}"
            ) from e

        if not response.is_success:
            reason = _oauth_error_reason(response)
            raise AuthError(
                f"OAuth failed ({response.status_code}) {excerpt(response.text)}".strip(),
                reason=reason,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise AuthError(
                "OAuth response missing access_token", status_code=response.status_code
            )
        return token

    async def fetch_transactions(self, access_token: str, window: Window) -> List[RawRecord]:
        page = 1
        records: List[RawRecord] = []

        while True:
            logger.info("fetch.page_requested", page=page, timeout=self.timeout)
            payload = await self.fetch_page(access_token, window, page)

            details = payload.get("transaction_details")
            if not isinstance(details, list):
                details = []
            records.extend(details)

            total_pages = _total_pages(payload)
            logger.info(
                "fetch.page_received",
                page=page,
                total_pages=total_pages,
                received=len(details),
                total=len(records),
            )

            if page >= total_pages:
                break
            page += 1
            await self._sleep(self.config.between_page_delay)

        return records

    async def fetch_page(
        self, access_token: str, window: Window, page: int
    ) -> Dict[str, Any]:
        """
        Fetch one page, absorbing transient network failures and 429s.

        Retry counters live in this call only, so every page starts with a
        fresh budget.
        """
        params = {
            "start_date": window.start_param(),
            "end_date": window.end_param(),
            "fields": "transaction_info",
            "page_size": self.config.page_size,
            "page": page,
        }
        headers = {"Authorization": f"Bearer {access_token}"}
        rate_limit_policy = self.config.rate_limit_backoff
        rate_limit_retries = 0

        async def send() -> httpx.Response:
            return await self._http.get(
                REPORTING_PATH, params=params, headers=headers, timeout=self.timeout
            )

        while True:
            try:
                response = await retry_with_backoff(
                    send,
                    self.config.network_retry,
                    retry_on=(httpx.TransportError,),
                    operation_name=f"reporting.page.{page}",
                    sleep=self._sleep,
                    rng=self._rng,
                )
            except httpx.TransportError as e:
                raise NetworkError(
                    f"Reporting API network timeout/hang (page {page}): {type(e).__name__}"
                ) from e

            if response.status_code == 429:
                if rate_limit_retries >= self.config.max_rate_limit_retries:
                    raise RateLimitExhausted(
                        f"Rate limit reached on page {page} "
                        f"after {rate_limit_retries} retries",
                        page=page,
                        retries=rate_limit_retries,
                    )

                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                wait = (
                    retry_after
                    if retry_after is not None
                    else backoff_delay(rate_limit_policy, rate_limit_retries, self._rng)
                )
                rate_limit_retries += 1
                logger.warning(
                    "fetch.rate_limited",
                    page=page,
                    retry=rate_limit_retries,
                    wait_seconds=round(wait, 2),
                    retry_after=retry_after is not None,
                    body=excerpt(response.text, 200),
                )
                await self._sleep(wait)
                continue

            if not response.is_success:
                raise ApiError(
                    f"Reporting API failed ({response.status_code}) "
                    f"{excerpt(response.text)}".strip(),
                    status_code=response.status_code,
                    body=response.text,
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise ApiError(
                    f"Reporting API returned invalid JSON (page {page})",
                    status_code=response.status_code,
                    body=response.text,
                ) from e
            if not isinstance(payload, dict):
                raise ApiError(
                    f"Reporting API returned unexpected payload (page {page})",
                    status_code=response.status_code,
                    body=response.text,
                )
            return payload


def _total_pages(payload: Dict[str, Any]) -> int:
    try:
        return max(int(payload.get("total_pages") or 1), 1)
    except (TypeError, ValueError):
        return 1


def _oauth_error_reason(response: httpx.Response) -> Optional[str]:
    """Pull the OAuth ``error`` code out of a failed token response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    if "invalid_client" in response.text:
        return "invalid_client"
    return None
