"""Database models for the provider ingestor."""

from .account import Account
from .transaction import Transaction

__all__ = ["Account", "Transaction"]
