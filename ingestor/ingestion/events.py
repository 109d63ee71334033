"""
Event classification and idempotent persistence.

Raw reporting records are reduced to recognised events, split into
captures (confirmed inflow) and everything else, and written once per
``(provider, provider_event_id)``.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional

import structlog

from ingestor.db.unit_of_work import UnitOfWork
from ingestor.ingestion.clients.base import RawRecord

logger = structlog.get_logger()

# Tried in order; the first one that parses wins.
TIMESTAMP_FIELDS = (
    "transaction_initiation_date",
    "transaction_updated_date",
    "transaction_event_date",
)

# 2024-05-01T10:00:00+0000 -> 2024-05-01T10:00:00+00:00
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_provider_timestamp(value: Any) -> Optional[datetime]:
    """Parse a provider ISO-8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Numeric amount or None for missing, non-numeric or non-finite values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


@dataclass(frozen=True)
class ClassifiedEvent:
    """A recognised, well-formed provider event ready to persist."""

    provider_event_id: str
    event_type: str
    occurred_at: datetime
    amount: Optional[Decimal]
    is_capture: bool
    payload: RawRecord


@dataclass
class Classification:
    """Outcome of classifying one account's records."""

    events: List[ClassifiedEvent] = field(default_factory=list)
    capture_count: int = 0
    capture_total: Decimal = Decimal("0")
    non_capture_count: int = 0
    unrecognized: int = 0
    malformed: int = 0

    @property
    def discarded(self) -> int:
        return self.unrecognized + self.malformed


class EventClassifier:
    """Filters and labels raw reporting records."""

    def __init__(self, event_codes: Iterable[str], capture_event_code: str):
        self.event_codes = frozenset(event_codes)
        self.capture_event_code = capture_event_code

    def classify_record(self, record: RawRecord) -> Optional[ClassifiedEvent]:
        """
        Classify a single record.

        Returns None for records that are not ingested: no
        ``transaction_info``, an unrecognised event code, or a missing id
        or timestamp.
        """
        info = record.get("transaction_info") if isinstance(record, Mapping) else None
        if not isinstance(info, Mapping):
            return None

        event_type = info.get("transaction_event_code")
        if not self._is_known_code(event_type):
            return None

        event_id = info.get("transaction_id")
        occurred_at = _first_timestamp(info)
        if not event_id or occurred_at is None:
            return None

        amount_info = info.get("transaction_amount")
        amount = (
            parse_amount(amount_info.get("value"))
            if isinstance(amount_info, Mapping)
            else None
        )

        is_capture = (
            event_type == self.capture_event_code
            and amount is not None
            and amount > 0
        )
        return ClassifiedEvent(
            provider_event_id=str(event_id),
            event_type=event_type,
            occurred_at=occurred_at,
            amount=amount,
            is_capture=is_capture,
            payload=dict(record),
        )

    def classify(self, records: Iterable[RawRecord]) -> Classification:
        result = Classification()
        for record in records:
            event = self.classify_record(record)
            if event is None:
                if self._is_recognized(record):
                    result.malformed += 1
                else:
                    result.unrecognized += 1
                continue

            result.events.append(event)
            if event.is_capture:
                result.capture_count += 1
                result.capture_total += event.amount  # type: ignore[operator]
            else:
                result.non_capture_count += 1
        return result

    def _is_recognized(self, record: Any) -> bool:
        info = record.get("transaction_info") if isinstance(record, Mapping) else None
        return isinstance(info, Mapping) and self._is_known_code(
            info.get("transaction_event_code")
        )

    def _is_known_code(self, code: Any) -> bool:
        # Non-string codes (lists, objects) are unrecognised.
        return isinstance(code, str) and code in self.event_codes


def _first_timestamp(info: Mapping[str, Any]) -> Optional[datetime]:
    for name in TIMESTAMP_FIELDS:
        parsed = parse_provider_timestamp(info.get(name))
        if parsed is not None:
            return parsed
    return None


@dataclass(frozen=True)
class PersistOutcome:
    attempted: int
    inserted: int

    @property
    def skipped(self) -> int:
        """Rows that were already present (not an error)."""
        return self.attempted - self.inserted


class EventPersister:
    """Writes classified events with insert-if-absent semantics."""

    def __init__(self, provider: str, session_factory=None):
        self.provider = provider
        self._session_factory = session_factory

    async def persist(
        self, account_id: int, events: List[ClassifiedEvent]
    ) -> PersistOutcome:
        if not events:
            return PersistOutcome(attempted=0, inserted=0)

        inserted = 0
        async with UnitOfWork(self._session_factory) as uow:
            for event in events:
                written = await uow.transactions.insert_if_absent(
                    account_id=account_id,
                    provider=self.provider,
                    provider_event_id=event.provider_event_id,
                    event_type=event.event_type,
                    payload=event.payload,
                    occurred_at=event.occurred_at,
                    verified=True,
                )
                if written:
                    inserted += 1
                else:
                    logger.debug(
                        "persist.already_present",
                        provider_event_id=event.provider_event_id,
                    )

        outcome = PersistOutcome(attempted=len(events), inserted=inserted)
        logger.debug(
            "persist.complete",
            account_id=account_id,
            attempted=outcome.attempted,
            inserted=outcome.inserted,
            skipped=outcome.skipped,
        )
        return outcome
