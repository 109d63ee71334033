"""
Ingestion run orchestrator.

Walks every active account in turn: token, window, fetch,
classify/persist. A failing account is reported and skipped; the run
carries on with the next one.
"""

import asyncio
import time
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ingestor.core.config import Settings, get_settings
from ingestor.core.errors import ConfigurationError, FailureKind, IngestionError
from ingestor.db.base import get_session_factory
from ingestor.ingestion.clients import BaseReportingClient, PayPalReportingClient
from ingestor.ingestion.config import IngestionConfig
from ingestor.ingestion.credentials import (
    Account,
    AccountSource,
    SchemaDiscoveryAccountSource,
)
from ingestor.ingestion.events import EventClassifier, EventPersister
from ingestor.ingestion.metrics import (
    AccountResult,
    AccountStatus,
    RunHistory,
    RunSummary,
)
from ingestor.ingestion.retry import Sleep
from ingestor.ingestion.window import Clock, WindowCursor, utcnow

logger = structlog.get_logger()


class IngestionPoller:
    """
    Runs one ingestion pass over all accounts.

    Accounts are processed strictly one after another because the
    provider's rate limits are shared across an organisation's apps.
    """

    def __init__(
        self,
        config: IngestionConfig,
        client: BaseReportingClient,
        accounts: AccountSource,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
        history: Optional[RunHistory] = None,
    ):
        """
        Initialize the poller.

        Args:
            config: Ingestion configuration
            client: Provider reporting client
            accounts: Source of accounts to poll
            session_factory: Database session factory (defaults to settings)
            sleep: Awaitable used for the inter-account delay
            clock: Returns the current UTC time for window computation
            history: Run history shared with the HTTP surface
        """
        self.config = config
        self.client = client
        self.accounts = accounts
        self.cursor = WindowCursor(config, session_factory, clock)
        self.classifier = EventClassifier(config.event_codes, config.capture_event_code)
        self.persister = EventPersister(config.provider, session_factory)
        self.history = history or RunHistory()
        self._sleep = sleep

    async def run_once(self) -> RunSummary:
        """
        Execute a single pass.

        Raises:
            ConfigurationError: If the account list cannot be resolved
        """
        summary = self.history.new_run()
        logger.info(
            "run.started",
            run_id=summary.run_id,
            provider=self.config.provider,
            max_window_hours=self.config.max_window_hours,
            overlap_minutes=self.config.overlap_minutes,
        )

        accounts = await self.accounts.list_active_accounts()
        logger.info("run.accounts_found", run_id=summary.run_id, count=len(accounts))

        for account in accounts:
            with structlog.contextvars.bound_contextvars(
                run_id=summary.run_id, account=account.label
            ):
                result = await self.ingest_account(account)
            summary.accounts.append(result)
            await self._sleep(self.config.between_account_delay)

        self.history.finish(summary)
        logger.info(
            "run.completed",
            run_id=summary.run_id,
            accounts=len(summary.accounts),
            failed=len(summary.failed),
            inserted=summary.total_inserted,
            skipped=summary.total_skipped,
            duration_seconds=round(summary.duration_seconds, 2),
        )
        return summary

    async def ingest_account(self, account: Account) -> AccountResult:
        """Ingest one account, converting any failure into a failed result."""
        started = time.monotonic()
        result = AccountResult(account_id=account.account_id, label=account.label)

        try:
            await self._ingest(account, result)
        except IngestionError as e:
            self._record_failure(result, e.kind, e)
        except Exception as e:
            self._record_failure(result, FailureKind.OTHER, e, exc_info=True)

        result.duration_seconds = time.monotonic() - started
        return result

    async def _ingest(self, account: Account, result: AccountResult) -> None:
        token = await self.client.get_access_token(
            account.provider_client_id, account.provider_client_secret
        )
        logger.info("account.token_ok")

        window = await self.cursor.window_for(account.account_id)
        result.window_start, result.window_end = window.start, window.end
        logger.info("account.window", start=window.start_param(), end=window.end_param())

        records = await self.client.fetch_transactions(token, window)
        result.fetched = len(records)

        classification = self.classifier.classify(records)
        outcome = await self.persister.persist(account.account_id, classification.events)

        result.capture_count = classification.capture_count
        result.capture_total = classification.capture_total
        result.non_capture_count = classification.non_capture_count
        result.discarded = classification.discarded
        result.inserted = outcome.inserted
        result.skipped = outcome.skipped

        if classification.events:
            result.status = AccountStatus.SUCCESS
            logger.info(
                "account.completed",
                status_line=result.status_line(),
                fetched=result.fetched,
                captures=result.capture_count,
                capture_total=str(result.capture_total),
                non_captures=result.non_capture_count,
                discarded=result.discarded,
                inserted=result.inserted,
                skipped=result.skipped,
            )
        else:
            result.status = AccountStatus.EMPTY
            logger.info(
                "account.no_transactions",
                fetched=result.fetched,
                discarded=result.discarded,
            )

    def _record_failure(
        self,
        result: AccountResult,
        kind: FailureKind,
        error: Exception,
        exc_info: bool = False,
    ) -> None:
        result.status = AccountStatus.FAILED
        result.failure_kind = kind
        result.error = str(error) or type(error).__name__

        log = logger.warning if kind is FailureKind.RATE_LIMITED else logger.error
        log(
            "account.failed",
            cause=kind.value,
            status_line=result.status_line(),
            error=result.error,
            error_type=type(error).__name__,
            exc_info=exc_info,
        )


_CLIENTS = {
    "paypal": PayPalReportingClient,
}


def create_poller(
    settings: Optional[Settings] = None, history: Optional[RunHistory] = None
) -> IngestionPoller:
    """
    Wire a poller from settings.

    Raises:
        ConfigurationError: If DATABASE_URL is missing or the provider has
            no reporting client
    """
    settings = settings or get_settings()
    config = IngestionConfig.from_settings(settings)

    client_cls = _CLIENTS.get(config.provider)
    if client_cls is None:
        raise ConfigurationError(
            f"No reporting client for provider {config.provider!r} "
            f"(available: {', '.join(sorted(_CLIENTS))})"
        )

    session_factory = get_session_factory(settings)
    accounts = SchemaDiscoveryAccountSource(
        config.provider, session_factory, schema=config.credential_schema
    )
    return IngestionPoller(
        config,
        client_cls(config),
        accounts,
        session_factory=session_factory,
        history=history,
    )
