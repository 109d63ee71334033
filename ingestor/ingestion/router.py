"""
Ingestion API routes.

Lets an operator trigger a pass on demand and inspect the last result.
Scheduling stays with the external cron/scheduler.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ingestor.core.errors import ConfigurationError
from ingestor.ingestion.poller import IngestionPoller, create_poller

logger = structlog.get_logger()

router = APIRouter(prefix="/ingestion", tags=["ingestion"])

_poller: Optional[IngestionPoller] = None
_run_lock = asyncio.Lock()


class RunResponse(BaseModel):
    """Summary of one ingestion pass."""

    run_id: str
    started_at: str
    ended_at: Optional[str]
    duration_seconds: float
    account_count: int
    failed_count: int
    failures_by_kind: Dict[str, int]
    total_inserted: int
    total_skipped: int
    total_captured: str
    accounts: List[Dict[str, Any]]


def get_poller() -> IngestionPoller:
    """
    Get or create the process-wide poller.

    Raises:
        HTTPException: 503 if the poller cannot be configured
    """
    global _poller
    if _poller is None:
        try:
            _poller = create_poller()
        except ConfigurationError as e:
            logger.error("ingestion.not_configured", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Ingestion not configured: {e}",
            )
    return _poller


async def shutdown_poller() -> None:
    """Close the poller's HTTP client if one was created."""
    global _poller
    if _poller is not None:
        await _poller.client.aclose()
        _poller = None


@router.post("/run", response_model=RunResponse)
async def trigger_run(poller: IngestionPoller = Depends(get_poller)):
    """
    Run one ingestion pass immediately.

    Returns 409 while another pass started through this endpoint is still
    running; the provider's rate limits make overlapping passes harmful.
    """
    if _run_lock.locked():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An ingestion run is already in progress",
        )

    async with _run_lock:
        try:
            summary = await poller.run_once()
        except ConfigurationError as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Ingestion not configured: {e}",
            )
    return summary.to_dict()


@router.get("/runs", response_model=List[RunResponse])
async def recent_runs(
    limit: Optional[int] = Query(default=None, ge=1, le=20),
    poller: IngestionPoller = Depends(get_poller),
):
    """Recent pass summaries, newest first."""
    return [summary.to_dict() for summary in poller.history.recent(limit)]


@router.get("/last-run", response_model=RunResponse)
async def last_run(poller: IngestionPoller = Depends(get_poller)):
    """Summary of the most recent completed pass."""
    summary = poller.history.last()
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No run has completed yet"
        )
    return summary.to_dict()
