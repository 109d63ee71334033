"""Transaction model for events ingested from the provider reporting API."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ingestor.db.base import Base


class Transaction(Base):
    """
    One provider event, stored once per natural key.

    Rows are inserted if absent and never updated or deleted by the
    ingestor. The latest ``occurred_at`` per account doubles as the
    polling cursor.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
        comment="Merchant account the event belongs to",
    )
    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Provider discriminator (e.g., 'paypal')",
    )
    provider_event_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Provider-assigned transaction id",
    )
    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Provider event code (e.g., 'T0006')",
    )
    payload_json: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Raw record as returned by the provider",
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the event happened at the provider (UTC)",
    )
    verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the event came from an authenticated provider feed",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_event_id", name="uq_transactions_provider_event"
        ),
        Index("idx_transactions_cursor", "provider", "account_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, provider={self.provider}, "
            f"provider_event_id={self.provider_event_id}, event_type={self.event_type})>"
        )
