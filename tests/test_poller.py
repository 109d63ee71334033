"""
Tests for the ingestion orchestrator.

Runs full passes against an in-memory database and an in-process
provider, with a virtual clock so pacing and backoff take no real time.
"""

import random
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from ingestor.core.errors import ConfigurationError, FailureKind
from ingestor.ingestion.clients import PayPalReportingClient
from ingestor.ingestion.config import IngestionConfig
from ingestor.ingestion.credentials import SchemaDiscoveryAccountSource
from ingestor.ingestion.metrics import AccountStatus
from ingestor.ingestion.poller import IngestionPoller
from tests.fixtures.provider import BASE_URL, ProviderStub, make_record, rate_limited
from tests.fixtures.store import stored_ids

CONFIG = IngestionConfig(api_base_url=BASE_URL)

ACME_RECORDS = [
    make_record("CAP1", amount="10.50"),
    make_record("REF1", amount="-5.00", initiated="2024-05-01T09:00:00+0000"),
    make_record("NOAMT", amount=None, initiated="2024-05-01T08:00:00+0000"),
    make_record("HOLD", event_code="T1107"),
]


@pytest.fixture
def provider(clock):
    return ProviderStub(clock)


@pytest_asyncio.fixture
async def poller(provider, clock, session_factory):
    http = provider.http_client()
    client = PayPalReportingClient(
        CONFIG, http_client=http, sleep=clock.sleep, rng=random.Random(3)
    )
    poller = IngestionPoller(
        CONFIG,
        client,
        SchemaDiscoveryAccountSource("paypal", session_factory),
        session_factory=session_factory,
        sleep=clock.sleep,
        clock=clock,
    )
    yield poller
    await http.aclose()


@pytest.mark.asyncio
class TestRunOnce:
    """Full passes over seeded accounts."""

    async def test_ingests_and_summarises(self, poller, provider, seed_accounts, session_factory):
        """Test one pass with an active account and a quiet one."""
        await seed_accounts(
            [(1, "Acme Store", "acme", "secret"), (2, "Zebra Shop", "zebra", "secret")]
        )
        provider.add_account("acme", records=ACME_RECORDS)
        provider.add_account("zebra")

        summary = await poller.run_once()

        acme, zebra = summary.accounts
        assert acme.status is AccountStatus.SUCCESS
        assert acme.capture_count == 1
        assert acme.capture_total == Decimal("10.50")
        assert acme.non_capture_count == 2
        assert acme.discarded == 1
        assert (acme.inserted, acme.skipped) == (3, 0)
        assert acme.status_line() == (
            "Acme Store: 1 capture tx | TOTAL 10.50 | 2 non-capture events | "
            "INSERTED 3 | SKIPPED 0"
        )
        assert zebra.status is AccountStatus.EMPTY
        assert zebra.status_line() == "Zebra Shop: no transactions"

        assert await stored_ids(session_factory, account_id=1) == ["CAP1", "NOAMT", "REF1"]
        assert summary.total_inserted == 3
        assert summary.failed == []
        assert poller.history.last() is summary

    async def test_second_pass_is_idempotent(self, poller, provider, seed_accounts, session_factory):
        """Test that re-reading the same events writes nothing new."""
        await seed_accounts([(1, "Acme Store", "acme", "secret")])
        provider.add_account("acme", records=ACME_RECORDS)

        first = await poller.run_once()
        second = await poller.run_once()

        assert first.accounts[0].inserted == 3
        assert (second.accounts[0].inserted, second.accounts[0].skipped) == (0, 3)
        assert "INSERTED 0 | SKIPPED 3" in second.accounts[0].status_line()
        assert await stored_ids(session_factory, account_id=1) == ["CAP1", "NOAMT", "REF1"]

    async def test_second_pass_window_follows_stored_events(
        self, poller, provider, seed_accounts
    ):
        """Test the next window starts two hours before the newest stored event."""
        await seed_accounts([(1, "Acme Store", "acme", "secret")])
        provider.add_account("acme", records=ACME_RECORDS)

        await poller.run_once()
        await poller.run_once()

        first, second = provider.page_requests
        assert first.params["start_date"] == "2024-05-01T06:00:00.000Z"
        assert second.params["start_date"] == "2024-05-01T08:00:00.000Z"

    async def test_no_accounts(self, poller, provider, seed_accounts):
        """Test an empty credential table produces an empty summary."""
        await seed_accounts([])

        summary = await poller.run_once()

        assert summary.accounts == []
        assert provider.token_requests == []
        assert summary.ended_at is not None

    async def test_paces_between_accounts(self, poller, provider, seed_accounts, clock):
        """Test the inter-account delay follows every account."""
        await seed_accounts(
            [(1, "Acme Store", "acme", "secret"), (2, "Zebra Shop", "zebra", "secret")]
        )
        provider.add_account("acme")
        provider.add_account("zebra")

        await poller.run_once()

        assert clock.sleeps == [1.5, 1.5]

    async def test_missing_credential_relation_propagates(self, poller):
        """Test a run cannot start without a credential relation."""
        with pytest.raises(ConfigurationError):
            await poller.run_once()


@pytest.mark.asyncio
class TestAccountIsolation:
    """A failing account is reported and the pass carries on."""

    async def test_bad_credentials(self, poller, provider, seed_accounts, session_factory):
        await seed_accounts(
            [(1, "Acme Store", "acme", "wrong"), (2, "Beta Shop", "beta", "secret")]
        )
        provider.add_account("acme", secret="secret", records=ACME_RECORDS)
        provider.add_account("beta", records=[make_record("B1")])

        summary = await poller.run_once()

        acme, beta = summary.accounts
        assert acme.status is AccountStatus.FAILED
        assert acme.failure_kind is FailureKind.BAD_CREDENTIALS
        assert "invalid_client" in acme.status_line()
        assert beta.status is AccountStatus.SUCCESS
        assert provider.pages_for("acme") == []
        assert await stored_ids(session_factory, account_id=1) == []
        assert await stored_ids(session_factory, account_id=2) == ["B1"]
        assert summary.failures_by_kind() == {"bad_credentials": 1}

    async def test_rate_limit_exhausted(self, poller, provider, seed_accounts, session_factory):
        await seed_accounts(
            [(1, "Acme Store", "acme", "secret"), (2, "Beta Shop", "beta", "secret")]
        )
        provider.add_account("acme", records=ACME_RECORDS)
        provider.add_account("beta", records=[make_record("B1")])
        provider.script("acme", 1, *(rate_limited() for _ in range(7)))

        summary = await poller.run_once()

        acme, beta = summary.accounts
        assert acme.failure_kind is FailureKind.RATE_LIMITED
        assert acme.status_line().startswith("Acme Store: FAILED [rate_limited]")
        assert beta.status is AccountStatus.SUCCESS
        assert await stored_ids(session_factory, account_id=1) == []

    async def test_insufficient_scope(self, poller, provider, seed_accounts):
        await seed_accounts([(1, "Acme Store", "acme", "secret")])
        provider.add_account("acme")
        provider.script("acme", 1, httpx.Response(403, json={"name": "NOT_AUTHORIZED"}))

        summary = await poller.run_once()

        assert summary.accounts[0].failure_kind is FailureKind.INSUFFICIENT_SCOPE

    async def test_network_failure(self, poller, provider, seed_accounts):
        await seed_accounts([(1, "Acme Store", "acme", "secret")])
        provider.add_account("acme")
        provider.script("acme", 1, *(httpx.ConnectTimeout("timed out") for _ in range(3)))

        summary = await poller.run_once()

        assert summary.accounts[0].failure_kind is FailureKind.NETWORK

    async def test_unexpected_error(self, poller, provider, seed_accounts):
        await seed_accounts(
            [(1, "Acme Store", "acme", "secret"), (2, "Beta Shop", "beta", "secret")]
        )
        provider.add_account("acme")
        provider.add_account("beta", records=[make_record("B1")])
        provider.script("acme", 1, RuntimeError("handler bug"))

        summary = await poller.run_once()

        acme, beta = summary.accounts
        assert acme.failure_kind is FailureKind.OTHER
        assert acme.error == "handler bug"
        assert "handler bug" in acme.status_line()
        assert beta.status is AccountStatus.SUCCESS

    async def test_failure_keeps_pacing(self, poller, provider, seed_accounts, clock):
        await seed_accounts(
            [(1, "Acme Store", "acme", "wrong"), (2, "Beta Shop", "beta", "secret")]
        )
        provider.add_account("acme", secret="secret")
        provider.add_account("beta")

        await poller.run_once()

        assert clock.sleeps == [1.5, 1.5]
