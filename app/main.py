"""
Client Analytics Sync
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.config import get_settings
from app.utils.logger import log
from app import __version__

# Import routers
from app.api import health, sync

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Bootstrap credential files from env vars (for Render / PaaS)
    from app.utils.credentials import bootstrap_credentials, resolve_credentials
    bootstrap_credentials()

    # Resolve the GA4 credential once and hand it to the sync service
    from app.services.sync_service import init_sync_service
    try:
        credentials = resolve_credentials()
    except Exception as e:
        log.error(f"GA4 credential resolution failed, syncs will fail until fixed: {str(e)}")
        credentials = None
    init_sync_service(credentials)

    # Initialize database
    try:
        from app.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for automated data syncs
    scheduler_started = False
    if settings.enable_scheduler:
        try:
            from app.scheduler import start_scheduler
            start_scheduler()
            scheduler_started = True
            log.info("Scheduler started successfully")
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if scheduler_started:
        from app.scheduler import stop_scheduler
        stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Daily Google Analytics 4 metrics for every tracked client

    - Syncs yesterday's sessions, users, pageviews, engagement and organic
      search sessions for each active client once a day
    - Backfills historical ranges on demand
    - Records every sync attempt for monitoring
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(sync.router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "description": "Daily GA4 metrics sync for tracked clients",
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
        "endpoints": {
            "run_sync": "POST /sync/run",
            "backfill_client": "POST /sync/backfill/{client_id}",
            "sync_progress": "GET /sync/progress",
            "sync_logs": "GET /sync/logs",
            "sync_status": "GET /sync/status",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
