"""
GA4 metric sync endpoints
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from app.services.errors import ClientNotFoundError
from app.services.sync_service import SyncService, get_sync_service
from app.utils.helpers import generate_date_range, parse_iso_date
from app.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


def _parse_date_param(value: Optional[str], name: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_iso_date(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"{name}: {e}")


def _daily_sync_in_flight(service: SyncService) -> bool:
    """True from the moment a run is accepted until its background task finishes"""
    if service.is_batch_running():
        return True
    return service.progress.get("daily", {}).get("status") in ("started", "running")


async def _run_daily_sync(service: SyncService, sync_date: Optional[date]):
    """Background task: sync all active clients."""
    service.record_progress("daily", "running")
    try:
        if sync_date is None:
            summary = await service.sync_yesterday()
        else:
            summary = await service.sync_all_clients(sync_date)
        service.record_progress("daily", "completed", result=summary.to_dict())
        log.info(f"Background daily sync completed: {summary.success_count}/{summary.total_clients} clients")
    except Exception as e:
        log.error(f"Background daily sync error: {str(e)}")
        service.record_progress("daily", "failed", error=str(e))


async def _run_backfill(service: SyncService, client_id: int, start: date, end: date):
    """Background task: backfill one client."""
    key = f"backfill:{client_id}"
    service.record_progress(key, "running")
    try:
        summary = await service.backfill_client_data(client_id, start, end)
        service.record_progress(key, "completed", result=summary.to_dict())
    except Exception as e:
        log.error(f"Background backfill error for client {client_id}: {str(e)}")
        service.record_progress(key, "failed", error=str(e))


@router.post("/run")
async def run_sync(
    background_tasks: BackgroundTasks,
    day: Optional[str] = Query(None, alias="date", description="Date to sync (YYYY-MM-DD), defaults to yesterday"),
    service: SyncService = Depends(get_sync_service),
):
    """
    Sync every active client for one date (runs in background).
    Check progress at GET /sync/progress
    """
    sync_date = _parse_date_param(day, "date")
    if _daily_sync_in_flight(service):
        raise HTTPException(status_code=409, detail="A sync batch is already running")

    service.record_progress("daily", "started")
    background_tasks.add_task(_run_daily_sync, service, sync_date)
    return {
        "message": "Sync started in background",
        "date": sync_date.isoformat() if sync_date else "yesterday",
        "check_progress": "/sync/progress",
    }


@router.post("/backfill/{client_id}")
async def backfill_client(
    client_id: int,
    background_tasks: BackgroundTasks,
    start_date: str = Query(..., description="First date (YYYY-MM-DD)"),
    end_date: str = Query(..., description="Last date (YYYY-MM-DD), inclusive"),
    service: SyncService = Depends(get_sync_service),
):
    """
    Backfill one client day by day (runs in background).

    Example: POST /sync/backfill/3?start_date=2024-01-01&end_date=2024-01-31
    """
    start = _parse_date_param(start_date, "start_date")
    end = _parse_date_param(end_date, "end_date")
    try:
        days = len(generate_date_range(start, end))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if service.store.get_client(client_id) is None:
        raise HTTPException(status_code=404, detail=str(ClientNotFoundError(client_id)))

    key = f"backfill:{client_id}"
    service.record_progress(key, "started")
    background_tasks.add_task(_run_backfill, service, client_id, start, end)
    return {
        "message": "Backfill started in background",
        "client_id": client_id,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "days": days,
        "check_progress": "/sync/progress",
    }


@router.get("/progress")
async def get_sync_progress(service: SyncService = Depends(get_sync_service)):
    """Status of background sync runs started from this process"""
    return {
        "batch_running": service.is_batch_running(),
        "runs": service.progress,
    }


@router.get("/logs")
async def get_sync_logs(
    limit: int = Query(50, ge=1, le=500),
    status: Optional[str] = Query(None, description="success, failed or partial"),
    client_id: Optional[int] = Query(None),
    service: SyncService = Depends(get_sync_service),
):
    """Most recent sync log entries, newest first"""
    if status is not None and status not in ("success", "failed", "partial"):
        raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
    try:
        logs = service.audit.recent(limit=limit, status=status, client_id=client_id)
        return {"count": len(logs), "logs": logs}
    except Exception as e:
        log.error(f"Error reading sync logs: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/status")
async def get_sync_status(service: SyncService = Depends(get_sync_service)):
    """
    Freshness overview: newest successful sync, whether data is stale,
    per-client last success and failures in the last 24 hours.
    """
    try:
        settings = service.settings
        last_sync = service.audit.last_successful_sync()
        failures = service.audit.recent_failures(since_hours=24)
        return {
            "last_successful_sync": last_sync.isoformat() if last_sync else None,
            "is_stale": service.audit.is_stale(settings.auto_sync_stale_hours),
            "stale_after_hours": settings.auto_sync_stale_hours,
            "batch_running": service.is_batch_running(),
            "clients": service.audit.last_successful_by_client(),
            "recent_failures": len(failures),
            "failures": failures,
            "connector": service.connector.get_status(),
        }
    except Exception as e:
        log.error(f"Error reading sync status: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
