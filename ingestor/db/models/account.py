"""Merchant account model (owned by the wider platform, read by the ingestor)."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ingestor.db.base import Base


class Account(Base):
    """A merchant account whose provider events are ingested."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Human readable store/merchant name"
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, label={self.label})>"
