"""
Ingestion run results.

Tracks per-account outcomes and run totals, renders the operator status
lines, and keeps a short in-memory history for the HTTP surface.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from ingestor.core.errors import FailureKind


class AccountStatus(str, Enum):
    """Status of one account within a run."""

    SUCCESS = "success"
    EMPTY = "empty"  # No recognised events in the window
    FAILED = "failed"


_FAILURE_MESSAGES = {
    FailureKind.BAD_CREDENTIALS: "OAuth failed (invalid_client), bad provider credentials for this account",
    FailureKind.AUTH: "OAuth failed, token could not be obtained",
    FailureKind.INSUFFICIENT_SCOPE: "Reporting API refused access, app lacks reporting permissions/scopes",
    FailureKind.RATE_LIMITED: "Rate limited, backed off until the retry budget ran out (try again shortly)",
    FailureKind.NETWORK: "Network failure, reporting API unreachable after retries",
    FailureKind.API: "Reporting API error",
    FailureKind.CONFIGURATION: "Configuration error",
    FailureKind.OTHER: "Poll failed",
}


@dataclass
class AccountResult:
    """Outcome of ingesting one account."""

    account_id: int
    label: str
    status: AccountStatus = AccountStatus.SUCCESS
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    fetched: int = 0
    capture_count: int = 0
    capture_total: Decimal = Decimal("0")
    non_capture_count: int = 0
    discarded: int = 0
    inserted: int = 0
    skipped: int = 0

    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is not AccountStatus.FAILED

    def status_line(self) -> str:
        """Human-readable one-line summary for operators."""
        if self.status is AccountStatus.FAILED:
            kind = self.failure_kind or FailureKind.OTHER
            line = f"{self.label}: FAILED [{kind.value}] {_FAILURE_MESSAGES[kind]}"
            if kind in (FailureKind.API, FailureKind.OTHER) and self.error:
                line += f": {self.error}"
            return line
        if self.status is AccountStatus.EMPTY:
            return f"{self.label}: no transactions"
        return (
            f"{self.label}: {self.capture_count} capture tx | "
            f"TOTAL {self.capture_total:.2f} | "
            f"{self.non_capture_count} non-capture events | "
            f"INSERTED {self.inserted} | SKIPPED {self.skipped}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["failure_kind"] = self.failure_kind.value if self.failure_kind else None
        data["capture_total"] = str(self.capture_total)
        for key in ("window_start", "window_end"):
            data[key] = data[key].isoformat() if data[key] else None
        return data


@dataclass
class RunSummary:
    """Outcome of one pass over all accounts."""

    run_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    accounts: List[AccountResult] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if not self.ended_at:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def failed(self) -> List[AccountResult]:
        return [a for a in self.accounts if not a.succeeded]

    @property
    def total_inserted(self) -> int:
        return sum(a.inserted for a in self.accounts)

    @property
    def total_skipped(self) -> int:
        return sum(a.skipped for a in self.accounts)

    @property
    def total_captured(self) -> Decimal:
        return sum((a.capture_total for a in self.accounts), Decimal("0"))

    def failures_by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.failed:
            kind = (result.failure_kind or FailureKind.OTHER).value
            counts[kind] = counts.get(kind, 0) + 1
        return counts

    def totals_line(self) -> str:
        return (
            f"{len(self.accounts)} accounts | {len(self.failed)} failed | "
            f"INSERTED {self.total_inserted} | SKIPPED {self.total_skipped} | "
            f"CAPTURED {self.total_captured:.2f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
            "account_count": len(self.accounts),
            "failed_count": len(self.failed),
            "failures_by_kind": self.failures_by_kind(),
            "total_inserted": self.total_inserted,
            "total_skipped": self.total_skipped,
            "total_captured": str(self.total_captured),
            "accounts": [a.to_dict() for a in self.accounts],
        }


class RunHistory:
    """In-memory record of recent runs."""

    def __init__(self, history_size: int = 20):
        self.history_size = history_size
        self._history: List[RunSummary] = []
        self._run_counter = 0

    def new_run(self) -> RunSummary:
        self._run_counter += 1
        now = datetime.now(timezone.utc)
        return RunSummary(
            run_id=f"ingest-{now.strftime('%Y%m%d-%H%M%S')}-{self._run_counter}",
            started_at=now,
        )

    def finish(self, summary: RunSummary) -> None:
        summary.ended_at = datetime.now(timezone.utc)
        self._history.append(summary)
        if len(self._history) > self.history_size:
            self._history = self._history[-self.history_size :]

    def last(self) -> Optional[RunSummary]:
        return self._history[-1] if self._history else None

    def recent(self, limit: Optional[int] = None) -> List[RunSummary]:
        """Recent runs, newest first."""
        history = list(reversed(self._history))
        return history[:limit] if limit else history
