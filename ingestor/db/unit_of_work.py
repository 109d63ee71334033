"""Unit of Work pattern for managing database transactions."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ingestor.db.base import get_session_factory
from ingestor.db.models import Transaction
from ingestor.db.repositories import TransactionRepository


class UnitOfWork:
    """
    Unit of Work pattern implementation for managing database transactions.

    All repository operations within a context share one session and one
    database transaction. The transaction commits when the block exits
    normally and rolls back when it raises.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            last_seen = await uow.transactions.latest_occurred_at("paypal", 7)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        session: Optional[AsyncSession] = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            session_factory: Factory used to open a session (defaults to the
                process-wide factory built from settings)
            session: Optional existing session (useful for testing); the
                caller keeps ownership and it is never closed here
        """
        self._session_factory = session_factory
        self._session = session
        self._owned_session = session is None

        # Repositories (initialized in __aenter__)
        self.transactions: TransactionRepository = None  # type: ignore

    @property
    def session(self) -> AsyncSession:
        assert self._session is not None, "UnitOfWork used outside its context"
        return self._session

    async def __aenter__(self) -> "UnitOfWork":
        """Enter async context manager."""
        if self._owned_session:
            factory = self._session_factory or get_session_factory()
            self._session = factory()

        self.transactions = TransactionRepository(Transaction, self.session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        try:
            if exc_type is not None:
                await self.rollback()
            else:
                await self.commit()
        finally:
            if self._owned_session and self._session:
                await self._session.close()
                self._session = None

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()
