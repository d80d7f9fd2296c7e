#!/usr/bin/env python3
"""
Register a GA4 property as a tracked client

Checks that the configured credential can read the property, creates the
client and, unless --no-backfill is given, imports the last
INITIAL_BACKFILL_DAYS days ending yesterday.

Usage:
    python scripts/register_client.py --name "Acme" --property-id 123456789 [--timezone Australia/Sydney]
"""
import asyncio
import sys
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.connectors.ga4_connector import GA4Connector
from app.models.base import init_db
from app.services.client_service import ClientService
from app.services.errors import PropertyAccessError, PropertyAlreadyRegisteredError
from app.services.sync_service import SyncService
from app.utils.logger import log


async def register(name: str, property_id: str, timezone: str, backfill: bool = True):
    connector = GA4Connector()
    clients = ClientService(connector)

    client = await clients.register_client(name, property_id, timezone)
    print(f"✓ Registered {client.name} (property {client.ga_property_id}) as client {client.id}")

    if not backfill:
        return

    start, end = clients.initial_backfill_window()
    print(f"Backfilling {start} to {end}...")
    summary = await SyncService(connector=connector).backfill_client_data(client.id, start, end)
    print(f"✓ {summary.success_count}/{summary.total_days} days synced, {summary.failure_count} failed")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Register a GA4 property as a tracked client")
    parser.add_argument("--name", required=True, help="Client display name")
    parser.add_argument("--property-id", required=True, help="Numeric GA4 property ID")
    parser.add_argument("--timezone", default="UTC", help="IANA timezone (default: UTC)")
    parser.add_argument("--no-backfill", action="store_true", help="Skip the initial backfill")

    args = parser.parse_args()

    try:
        init_db()
        asyncio.run(register(args.name, args.property_id, args.timezone, backfill=not args.no_backfill))
    except (PropertyAccessError, PropertyAlreadyRegisteredError, ValueError) as e:
        log.error(f"Registration failed: {e}")
        print(f"✗ {e}")
        sys.exit(1)
