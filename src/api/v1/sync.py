"""Sync API endpoints.

Endpoints
---------
- ``POST /api/v1/sync``         -- Start a background sync run.
- ``GET  /api/v1/sync/status``  -- Last sync result and scheduler state.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.services.ingestion.scheduler import SyncScheduler

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SyncTriggerResponse(BaseModel):
    """Response returned after requesting a sync run."""

    status: str
    message: str


class SyncStatusResponse(BaseModel):
    """Response for the sync status endpoint."""

    status: str
    last_result: dict[str, Any] | None = None
    scheduler_running: bool = False
    sync_in_progress: bool = False
    last_run_at: str | None = None


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _get_scheduler(request: Request) -> SyncScheduler:
    """Retrieve the sync scheduler from app state, or raise 503."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Sync scheduler not initialised.")
    return scheduler


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=202, response_model=SyncTriggerResponse)
async def trigger_sync(request: Request) -> SyncTriggerResponse:
    """Start a sync in the background and return immediately."""
    scheduler = _get_scheduler(request)

    if not scheduler.trigger():
        return SyncTriggerResponse(
            status="already_running",
            message="A sync is already in progress.",
        )

    logger.info("sync.manual_trigger")
    return SyncTriggerResponse(status="started", message="Sync started in background.")


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(request: Request) -> SyncStatusResponse:
    """Report the last sync result and whether a run is in flight."""
    scheduler = _get_scheduler(request)
    last = scheduler.last_result

    return SyncStatusResponse(
        status="ok" if last is not None else "no_runs_yet",
        last_result=last.to_dict() if last is not None else None,
        scheduler_running=scheduler.is_running,
        sync_in_progress=scheduler.is_syncing,
        last_run_at=scheduler.last_run_at.isoformat() if scheduler.last_run_at else None,
    )
