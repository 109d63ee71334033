"""
Incremental ingestion of provider reporting events.

This module resolves accounts and credentials, computes each account's
time window, pages through the provider's reporting API, and stores
recognised events idempotently.
"""

from ingestor.ingestion.clients import BaseReportingClient, PayPalReportingClient
from ingestor.ingestion.config import IngestionConfig, RetryPolicy
from ingestor.ingestion.metrics import AccountResult, RunSummary
from ingestor.ingestion.poller import IngestionPoller, create_poller

__all__ = [
    "AccountResult",
    "BaseReportingClient",
    "IngestionConfig",
    "IngestionPoller",
    "PayPalReportingClient",
    "RetryPolicy",
    "RunSummary",
    "create_poller",
]
