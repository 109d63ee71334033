"""Provider reporting client implementations."""

from ingestor.ingestion.clients.base import BaseReportingClient, RawRecord
from ingestor.ingestion.clients.paypal import PayPalReportingClient

__all__ = ["BaseReportingClient", "RawRecord", "PayPalReportingClient"]
