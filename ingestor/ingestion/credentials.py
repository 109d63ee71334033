"""
Account and credential resolution.

The orchestrator depends only on ``AccountSource``. The schema-discovering
implementation locates whichever relation stores the provider's client
credentials, once, and then loads active accounts from it.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

import structlog
from sqlalchemy import column, inspect, or_, select, table
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ingestor.core.errors import ConfigurationError
from ingestor.db.models import Account as AccountRow
from ingestor.db.unit_of_work import UnitOfWork

logger = structlog.get_logger()

DISCRIMINATOR_COLUMNS = ("provider", "provider_name")
ACTIVE_FLAG_COLUMN = "is_active"
ACCOUNT_REF_COLUMN = "account_id"


@dataclass(frozen=True)
class Account:
    """An account to poll, with its provider client credentials."""

    account_id: int
    label: str
    provider_client_id: str
    provider_client_secret: str = field(repr=False)


class AccountSource(Protocol):
    async def list_active_accounts(self) -> List[Account]:
        ...


@dataclass(frozen=True)
class CredentialRelation:
    """Where the provider credentials live."""

    table: str
    schema: Optional[str]
    client_id_column: str
    client_secret_column: str
    discriminators: Tuple[str, ...] = ()
    has_active_flag: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table


def credential_columns(provider: str) -> Tuple[str, str]:
    """Column names holding a provider's client id and secret."""
    return f"{provider}_client_id", f"{provider}_client_secret"


def select_credential_relation(
    tables: Sequence[Tuple[str, Sequence[str]]],
    provider: str,
    schema: Optional[str] = None,
) -> CredentialRelation:
    """
    Pick the credential relation from ``(table_name, column_names)`` pairs.

    Candidates must carry the client id, client secret and account reference
    columns. More discriminator columns win, then the lexically first name.

    Raises:
        ConfigurationError: If no relation has the required columns
    """
    client_id_col, secret_col = credential_columns(provider)
    required = {client_id_col, secret_col, ACCOUNT_REF_COLUMN}

    candidates = []
    for name, columns in tables:
        present = set(columns)
        if not required <= present:
            continue
        discriminators = tuple(c for c in DISCRIMINATOR_COLUMNS if c in present)
        candidates.append((-len(discriminators), name, discriminators, present))

    if not candidates:
        raise ConfigurationError(
            f"Could not auto-discover {provider} credential table "
            f"(needs {client_id_col}, {secret_col}, {ACCOUNT_REF_COLUMN})."
        )

    _, name, discriminators, present = min(candidates)
    return CredentialRelation(
        table=name,
        schema=schema,
        client_id_column=client_id_col,
        client_secret_column=secret_col,
        discriminators=discriminators,
        has_active_flag=ACTIVE_FLAG_COLUMN in present,
    )


class SchemaDiscoveryAccountSource:
    """
    AccountSource backed by a credential relation found via schema introspection.

    Discovery runs once per instance; later calls reuse the cached relation.
    """

    def __init__(
        self,
        provider: str,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        schema: Optional[str] = None,
        decrypt: Optional[Callable[[str], str]] = None,
    ):
        """
        Args:
            provider: Provider name; also the credential column prefix
            session_factory: Session factory (defaults to the settings one)
            schema: Schema to inspect (None = connection default)
            decrypt: Applied to every stored secret (identity by default)
        """
        self.provider = provider
        self.schema = schema
        self._session_factory = session_factory
        self._decrypt = decrypt or (lambda secret: secret)
        self._relation: Optional[CredentialRelation] = None

    async def discover(self) -> CredentialRelation:
        if self._relation is not None:
            return self._relation

        async with UnitOfWork(self._session_factory) as uow:
            conn = await uow.session.connection()
            tables = await conn.run_sync(self._scan_tables)

        self._relation = select_credential_relation(tables, self.provider, self.schema)
        logger.info(
            "credentials.relation_discovered",
            relation=self._relation.qualified_name,
            discriminators=list(self._relation.discriminators),
            active_flag=self._relation.has_active_flag,
        )
        return self._relation

    def _scan_tables(self, sync_conn: Connection) -> List[Tuple[str, List[str]]]:
        inspector = inspect(sync_conn)
        return [
            (name, [col["name"] for col in inspector.get_columns(name, schema=self.schema)])
            for name in (
                *inspector.get_table_names(schema=self.schema),
                *inspector.get_view_names(schema=self.schema),
            )
        ]

    async def list_active_accounts(self) -> List[Account]:
        relation = await self.discover()

        column_names = [relation.client_id_column, relation.client_secret_column, ACCOUNT_REF_COLUMN]
        column_names.extend(relation.discriminators)
        if relation.has_active_flag:
            column_names.append(ACTIVE_FLAG_COLUMN)
        creds = table(
            relation.table, *(column(name) for name in column_names), schema=relation.schema
        )

        client_id = creds.c[relation.client_id_column]
        client_secret = creds.c[relation.client_secret_column]
        query = (
            select(
                AccountRow.id.label("account_id"),
                AccountRow.label,
                client_id.label("client_id"),
                client_secret.label("client_secret"),
            )
            .select_from(creds)
            .join(AccountRow, AccountRow.id == creds.c[ACCOUNT_REF_COLUMN])
            .where(client_id.is_not(None), client_secret.is_not(None))
            .order_by(AccountRow.label.asc())
        )
        if relation.discriminators:
            query = query.where(
                or_(*(creds.c[name] == self.provider for name in relation.discriminators))
            )
        if relation.has_active_flag:
            query = query.where(creds.c[ACTIVE_FLAG_COLUMN].is_(True))

        async with UnitOfWork(self._session_factory) as uow:
            rows = (await uow.session.execute(query)).all()

        accounts = [
            Account(
                account_id=row.account_id,
                label=row.label,
                provider_client_id=row.client_id,
                provider_client_secret=self._decrypt(row.client_secret),
            )
            for row in rows
        ]
        logger.info("credentials.accounts_loaded", count=len(accounts))
        return accounts
