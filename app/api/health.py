"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from app.config import get_settings
from app import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "ga4_auth_mode": settings.ga4_auth_mode,
        "sync": {
            "scheduler_enabled": settings.enable_scheduler,
            "cron_schedule": settings.sync_cron_schedule,
            "timezone": settings.sync_timezone,
            "stale_after_hours": settings.auto_sync_stale_hours,
        },
        "timestamp": datetime.utcnow().isoformat()
    }
