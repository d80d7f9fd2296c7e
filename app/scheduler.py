"""
Scheduler for automated GA4 metric syncs

Uses APScheduler to run the daily sync and to catch up when data goes stale.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo
import asyncio

from app.models.base import init_db
from app.services.sync_service import get_sync_service
from app.config import get_settings
from app.utils.credentials import bootstrap_credentials
from app.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


# Sync Functions

async def sync_daily_metrics():
    """Sync yesterday's metrics for every active client (daily)"""
    try:
        log.info("Starting scheduled daily GA4 sync...")
        service = get_sync_service()
        if service.is_batch_running():
            log.info("Daily sync skipped: a sync batch is already running")
            return

        summary = await service.sync_yesterday()
        log.info(
            f"Scheduled sync completed for {summary.date}: "
            f"{summary.success_count}/{summary.total_clients} clients synced"
        )
    except Exception as e:
        log.error(f"Scheduled sync error: {str(e)}")


async def check_stale_data():
    """Run a catch-up sync when the newest successful sync is too old"""
    try:
        service = get_sync_service()
        if service.is_batch_running():
            log.debug("Stale-data check skipped: a sync batch is already running")
            return

        if not service.audit.is_stale(settings.auto_sync_stale_hours):
            return

        log.info("Data is stale, triggering automatic sync...")
        summary = await service.sync_yesterday()
        log.info(f"Automatic sync completed: {summary.success_count}/{summary.total_clients} clients synced")
    except Exception as e:
        log.error(f"Automatic sync error: {str(e)}")


def setup_scheduler():
    """
    Configure the scheduler.

    - Daily sync:       SYNC_CRON_SCHEDULE in SYNC_TIMEZONE (default 05:00 UTC)
    - Stale-data check: every AUTO_SYNC_CHECK_MINUTES
    """
    timezone = ZoneInfo(settings.sync_timezone)

    scheduler.add_job(
        sync_daily_metrics,
        trigger=CronTrigger.from_crontab(settings.sync_cron_schedule, timezone=timezone),
        id='ga4_daily_sync',
        name='GA4 Daily Metrics Sync',
        replace_existing=True,
        max_instances=1
    )

    scheduler.add_job(
        check_stale_data,
        trigger=IntervalTrigger(minutes=settings.auto_sync_check_minutes),
        id='ga4_stale_check',
        name='GA4 Stale Data Check',
        replace_existing=True,
        max_instances=1
    )

    log.info(
        f"Scheduler configured: daily sync '{settings.sync_cron_schedule}' "
        f"({settings.sync_timezone}), stale check every {settings.auto_sync_check_minutes} min"
    )


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def prepare_runtime():
    """Key file and tables for runs started outside the API process"""
    bootstrap_credentials()
    init_db()


def run_sync_now() -> dict:
    """
    Manually run the daily sync for yesterday

    Returns:
        Dict with the batch summary, or the error
    """
    try:
        log.info("Manually triggering daily sync...")
        summary = asyncio.run(get_sync_service().run_sync_now())
        return {
            'success': summary.success,
            'message': (
                f"Synced {summary.success_count}/{summary.total_clients} clients for {summary.date}"
            ),
            'summary': summary.to_dict(),
        }

    except Exception as e:
        log.error(f"Error triggering sync: {str(e)}")
        return {
            'success': False,
            'error': str(e)
        }


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs


async def _run_forever():
    start_scheduler()
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        stop_scheduler()


# CLI for manual syncs

if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("Usage: python -m app.scheduler <command>")
        print("\nCommands:")
        print("  start   Start the scheduler")
        print("  sync    Sync yesterday's metrics for all active clients now")
        print("  list    List all scheduled jobs")
        sys.exit(1)

    command = sys.argv[1]

    if command == "start":
        print("Starting scheduler...")
        prepare_runtime()
        try:
            asyncio.run(_run_forever())
        except (KeyboardInterrupt, SystemExit):
            print("\nShutting down scheduler...")

    elif command == "sync":
        prepare_runtime()
        result = run_sync_now()

        if result['success']:
            print(f"✓ {result['message']}")
        elif 'summary' in result:
            print(f"✗ {result['message']}")
            for item in result['summary']['results']:
                if not item['success']:
                    print(f"  - {item['client_name']}: {item['error']}")
            sys.exit(1)
        else:
            print(f"✗ Error: {result['error']}")
            sys.exit(1)

    elif command == "list":
        print("\nScheduled Jobs:")
        print("-" * 80)

        setup_scheduler()
        jobs = get_scheduled_jobs()

        if not jobs:
            print("No jobs scheduled")
        else:
            for job in jobs:
                print(f"\nID:       {job['id']}")
                print(f"Name:     {job['name']}")
                print(f"Next Run: {job['next_run']}")
                print(f"Trigger:  {job['trigger']}")

    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
