"""Transaction repository: cursor lookup and idempotent inserts."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from ingestor.core.errors import ConfigurationError
from ingestor.db.models.transaction import Transaction
from ingestor.db.repository import BaseRepository

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for Transaction model with ingestion-specific queries."""

    async def latest_occurred_at(
        self, provider: str, account_id: int
    ) -> Optional[datetime]:
        """
        Return the newest stored ``occurred_at`` for an account, or None.

        Backends that drop tzinfo (SQLite) hand back naive values; those
        were written as UTC and are returned as aware UTC datetimes.
        """
        query = select(func.max(self.model.occurred_at)).where(
            self.model.provider == provider,
            self.model.account_id == account_id,
        )
        result = await self.session.execute(query)
        latest = result.scalar()
        if latest is None:
            return None
        if isinstance(latest, str):
            latest = datetime.fromisoformat(latest)
        if latest.tzinfo is None:
            latest = latest.replace(tzinfo=timezone.utc)
        return latest

    async def insert_if_absent(
        self,
        *,
        account_id: int,
        provider: str,
        provider_event_id: str,
        event_type: str,
        payload: dict[str, Any],
        occurred_at: datetime,
        verified: bool = True,
    ) -> bool:
        """
        Insert one event unless its natural key is already stored.

        Returns:
            True if a row was written, False if it was already present
        """
        dialect = self.session.get_bind().dialect.name
        try:
            insert = _UPSERT_DIALECTS[dialect]
        except KeyError:
            raise ConfigurationError(
                f"insert-if-absent is not supported on dialect {dialect!r}"
            ) from None

        stmt = (
            insert(self.model)
            .values(
                account_id=account_id,
                provider=provider,
                provider_event_id=provider_event_id,
                event_type=event_type,
                payload_json=payload,
                occurred_at=occurred_at.astimezone(timezone.utc),
                verified=verified,
            )
            .on_conflict_do_nothing(index_elements=["provider", "provider_event_id"])
        )
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0
