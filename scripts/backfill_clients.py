#!/usr/bin/env python3
"""
GA4 Client Backfill Script

Imports historical daily metrics for one client or for every active client,
one day at a time, writing a sync log entry per day.

Usage:
    python scripts/backfill_clients.py (--client-id ID | --all) [--days 30] [--start YYYY-MM-DD --end YYYY-MM-DD]

Examples:
    # Last 30 days for client 3
    python scripts/backfill_clients.py --client-id 3

    # January 2024 for every active client
    python scripts/backfill_clients.py --all --start 2024-01-01 --end 2024-01-31
"""
import asyncio
import sys
import argparse
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import get_settings
from app.models.base import init_db
from app.services.errors import ClientNotFoundError
from app.services.sync_service import SyncService
from app.utils.helpers import parse_iso_date, yesterday_in
from app.utils.logger import log


def resolve_range(days: int, start: str = None, end: str = None):
    """Explicit --start/--end, or the last N days ending yesterday"""
    if start or end:
        if not (start and end):
            raise ValueError("--start and --end must be given together")
        return parse_iso_date(start), parse_iso_date(end)
    end_date = yesterday_in(get_settings().sync_timezone)
    return end_date - timedelta(days=days - 1), end_date


async def backfill_clients(client_id: int = None, days: int = 30, start: str = None, end: str = None,
                           delay: float = None, service: SyncService = None):
    start_date, end_date = resolve_range(days, start, end)
    if service is None:
        service = SyncService(backfill_delay=delay)
    elif delay is not None:
        service.backfill_delay = delay

    if client_id is not None:
        client_ids = [client_id]
    else:
        client_ids = [c.id for c in service.store.list_active_clients()]

    print(f"\n{'='*60}")
    print(f"GA4 Client Backfill")
    print(f"{'='*60}")
    print(f"Date range: {start_date} to {end_date}")
    print(f"Clients: {len(client_ids)}")
    print(f"Delay between days: {service.backfill_delay}s")
    print(f"{'='*60}\n")

    failures = 0
    for cid in client_ids:
        try:
            summary = await service.backfill_client_data(cid, start_date, end_date)
        except ClientNotFoundError as e:
            # Deleted since the roster was read; the rest still run
            log.error(f"Backfill skipped client {cid}: {e}")
            print(f"Client {cid}: skipped ({e})")
            failures += 1
            continue
        failures += summary.failure_count
        print(
            f"Client {cid}: {summary.success_count}/{summary.total_days} days synced "
            f"({summary.total_elapsed_ms / 1000:.1f}s)"
        )
        for result in summary.results:
            if not result.success:
                print(f"  ✗ {result.date}: {result.error}")

    print(f"\n{'='*60}")
    print(f"Backfill complete: {failures} failed day(s) or missing client(s)")
    print(f"{'='*60}\n")
    return failures


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Backfill GA4 daily metrics for tracked clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--client-id", type=int, help="Backfill a single client")
    target.add_argument("--all", action="store_true", help="Backfill every active client")
    parser.add_argument(
        "--days", type=int, default=30,
        help="Days ending yesterday to backfill (default: 30)"
    )
    parser.add_argument("--start", type=str, help="First date (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, help="Last date (YYYY-MM-DD), inclusive")
    parser.add_argument(
        "--delay", type=float, default=None,
        help="Seconds between days (default: BACKFILL_INTER_DAY_DELAY_SECONDS)"
    )

    args = parser.parse_args()

    try:
        init_db()
        failed = asyncio.run(backfill_clients(
            client_id=args.client_id,
            days=args.days,
            start=args.start,
            end=args.end,
            delay=args.delay,
        ))
    except (LookupError, ValueError) as e:
        log.error(f"Backfill aborted: {e}")
        print(f"✗ {e}")
        sys.exit(1)

    sys.exit(1 if failed else 0)
