"""
Time-window cursor for incremental polling.

The cursor is never stored on its own: it is the newest ``occurred_at``
already ingested for an account, read back at the start of every run.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ingestor.db.unit_of_work import UnitOfWork
from ingestor.ingestion.config import IngestionConfig

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_provider_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with milliseconds, e.g. 2024-05-01T10:00:00.000Z."""
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Window:
    """Half-open ``[start, end)`` range queried for one account."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def start_param(self) -> str:
        return format_provider_timestamp(self.start)

    def end_param(self) -> str:
        return format_provider_timestamp(self.end)


def compute_window(
    last_seen: Optional[datetime],
    now: datetime,
    max_window: timedelta,
    overlap: timedelta,
) -> Window:
    """
    Derive the query window from the last ingested event.

    ``start = max(now - max_window, (last_seen or now - max_window) - overlap)``
    and ``end = now``. A ``last_seen`` in the future is clamped so that the
    window is never inverted.
    """
    cap_start = now - max_window
    anchor = last_seen if last_seen is not None else cap_start
    start = max(cap_start, anchor - overlap)
    return Window(start=min(start, now), end=now)


class WindowCursor:
    """Computes an account's window from what is already stored."""

    def __init__(
        self,
        config: IngestionConfig,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        self._session_factory = session_factory
        self._clock = clock

    async def window_for(self, account_id: int) -> Window:
        async with UnitOfWork(self._session_factory) as uow:
            last_seen = await uow.transactions.latest_occurred_at(
                self.config.provider, account_id
            )

        window = compute_window(
            last_seen,
            self._clock(),
            self.config.get_max_window(),
            self.config.get_overlap(),
        )
        logger.debug(
            "cursor.computed",
            account_id=account_id,
            last_seen=last_seen.isoformat() if last_seen else None,
            start=window.start_param(),
            end=window.end_param(),
        )
        return window
