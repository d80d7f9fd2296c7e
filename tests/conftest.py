"""
Shared fixtures: an isolated in-memory database per test and a fake GA4
Data API client that answers run_report / get_metadata the way
BetaAnalyticsDataClient does.
"""
import os
import time

# Must be set before app modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("GA4_RETRY_BASE_DELAY", "0")
os.environ.setdefault("GA4_RETRY_MAX_DELAY", "0")
os.environ.setdefault("SYNC_INTER_CLIENT_DELAY_SECONDS", "0")
os.environ.setdefault("BACKFILL_INTER_DAY_DELAY_SECONDS", "0")

from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.connectors.ga4_connector import GA4Connector
from app.models.base import enable_sqlite_foreign_keys, init_db
from app.models.client import Client
from app.services.audit_log import AuditLog
from app.services.metrics_store import MetricsStore
from app.services.sync_service import SyncService


def compact(day: date) -> str:
    return day.strftime("%Y%m%d")


class FakeGA4Client:
    """
    Stand-in for BetaAnalyticsDataClient.

    Seed data with set_day(); queue failures with fail(). Failures are
    keyed by (property_id, kind) where kind is "daily", "organic" or
    "metadata"; times=None fails forever.
    """

    def __init__(self):
        self.days = {}
        self.organic = {}
        self.reverse_rows = False
        # Seconds each call blocks its thread, like a slow network round trip
        self.delay = 0
        self.calls = []
        self._failures = {}

    def set_day(self, property_id, day, organic=None, **metrics):
        self.days[(str(property_id), compact(day))] = metrics
        if organic is not None:
            self.organic[(str(property_id), compact(day))] = organic

    def fail(self, property_id, error, kind="daily", times=None):
        self._failures[(str(property_id), kind)] = [error, times]

    def _maybe_fail(self, property_id, kind):
        entry = self._failures.get((property_id, kind))
        if not entry:
            return
        error, remaining = entry
        if remaining is not None:
            if remaining <= 0:
                return
            entry[1] = remaining - 1
        raise error

    @staticmethod
    def _dates(request):
        date_range = request.date_ranges[0]
        start = date.fromisoformat(date_range.start_date)
        end = date.fromisoformat(date_range.end_date)
        current = start
        while current <= end:
            yield compact(current)
            current += timedelta(days=1)

    def run_report(self, request=None, timeout=None):
        if self.delay:
            time.sleep(self.delay)
        property_id = request.property.split("/")[1]
        organic_only = request.dimension_filter.filter.field_name == "sessionDefaultChannelGroup"
        kind = "organic" if organic_only else "daily"
        self.calls.append((kind, property_id, request.date_ranges[0].start_date, request.date_ranges[0].end_date))
        self._maybe_fail(property_id, kind)

        metric_names = [m.name for m in request.metrics]
        rows = []
        for day in self._dates(request):
            key = (property_id, day)
            if organic_only:
                if key not in self.organic:
                    continue
                values = {"sessions": self.organic[key]}
            else:
                if key not in self.days:
                    continue
                values = self.days[key]
            rows.append(SimpleNamespace(
                dimension_values=[SimpleNamespace(value=day)],
                metric_values=[SimpleNamespace(value=str(values.get(name, 0))) for name in metric_names],
            ))
        if self.reverse_rows:
            rows.reverse()

        return SimpleNamespace(
            dimension_headers=[SimpleNamespace(name="date")],
            metric_headers=[SimpleNamespace(name=name) for name in metric_names],
            rows=rows,
        )

    def get_metadata(self, request=None, timeout=None):
        if self.delay:
            time.sleep(self.delay)
        property_id = request.name.split("/")[1]
        self.calls.append(("metadata", property_id, None, None))
        self._maybe_fail(property_id, "metadata")
        return SimpleNamespace(name=request.name)

    def count(self, kind, property_id=None):
        return sum(
            1 for call in self.calls
            if call[0] == kind and (property_id is None or call[1] == str(property_id))
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def add_client(session_factory):
    """Insert a client row directly and return its id"""
    def _add(name, property_id, is_active=True, timezone="UTC"):
        db = session_factory()
        try:
            client = Client(name=name, ga_property_id=str(property_id), timezone=timezone, is_active=is_active)
            db.add(client)
            db.commit()
            return client.id
        finally:
            db.close()
    return _add


@pytest.fixture
def fake_ga4():
    return FakeGA4Client()


@pytest.fixture
def connector(fake_ga4):
    return GA4Connector(client=fake_ga4, retry_max_attempts=3, retry_base_delay=0, retry_max_delay=0)


@pytest.fixture
def store(session_factory):
    return MetricsStore(session_factory)


@pytest.fixture
def audit(session_factory):
    return AuditLog(session_factory)


@pytest.fixture
def sync_service(connector, store, audit):
    return SyncService(
        connector=connector,
        store=store,
        audit=audit,
        inter_client_delay=0,
        backfill_delay=0,
    )
