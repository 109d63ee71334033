import sys
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure project root is on sys.path so `import ingestor` and `tests.fixtures` work.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ingestor.core.config import get_settings  # noqa: E402
from ingestor.db.base import Base  # noqa: E402
from ingestor.db.models import Account, Transaction  # noqa: E402,F401
from tests.fixtures.provider import VirtualClock  # noqa: E402

CREDENTIALS_DDL = """
CREATE TABLE merchant_credentials (
    id INTEGER PRIMARY KEY,
    account_id INTEGER NOT NULL,
    provider TEXT,
    paypal_client_id TEXT,
    paypal_client_secret TEXT,
    is_active BOOLEAN NOT NULL DEFAULT 1
)
"""


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite database with all tables, one per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Get a database session for a test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


SeedAccounts = Callable[..., Awaitable[None]]


@pytest_asyncio.fixture
async def seed_accounts(engine) -> SeedAccounts:
    """
    Create a credential table and insert accounts with PayPal credentials.

    Each row is ``(account_id, label, client_id, secret)`` with optional
    ``provider`` / ``is_active`` overrides passed as a 5th/6th element.
    """
    async with engine.begin() as conn:
        await conn.execute(text(CREDENTIALS_DDL))

    async def seed(rows: Iterable[tuple], provider: Optional[str] = "paypal") -> None:
        async with engine.begin() as conn:
            for row in rows:
                account_id, label, client_id, secret, *rest = row
                row_provider = rest[0] if len(rest) > 0 else provider
                active = rest[1] if len(rest) > 1 else True
                await conn.execute(
                    text("INSERT INTO accounts (id, label) VALUES (:id, :label)"),
                    {"id": account_id, "label": label},
                )
                await conn.execute(
                    text(
                        "INSERT INTO merchant_credentials "
                        "(account_id, provider, paypal_client_id, paypal_client_secret, is_active) "
                        "VALUES (:account_id, :provider, :client_id, :secret, :active)"
                    ),
                    {
                        "account_id": account_id,
                        "provider": row_provider,
                        "client_id": client_id,
                        "secret": secret,
                        "active": active,
                    },
                )

    return seed
