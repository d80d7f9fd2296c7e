"""
Tests for the metrics store: roster, atomic upsert, range reads and
aggregates, against an in-memory SQLite database.
"""
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from app.models.daily_metric import DailyMetric
from app.services.normalizer import DailyMetrics


def metrics_for(day, sessions=100, organic=45, bounce=38.0, duration=60.0):
    return DailyMetrics(
        date=day,
        sessions=sessions,
        total_users=80,
        new_users=30,
        pageviews=250,
        avg_session_duration=duration,
        bounce_rate=bounce,
        organic_sessions=organic,
    )


def rows(session_factory, client_id):
    db = session_factory()
    try:
        return db.query(DailyMetric).filter(DailyMetric.client_id == client_id).order_by(DailyMetric.date).all()
    finally:
        db.close()


# ────────────────────────────────────────────
# ROSTER
# ────────────────────────────────────────────


class TestRoster:

    def test_active_clients_ordered_by_name(self, store, add_client):
        add_client("Zeta", "3")
        add_client("Alpha", "1")
        add_client("Mid", "2", is_active=False)

        clients = store.list_active_clients()

        assert [c.name for c in clients] == ["Alpha", "Zeta"]
        assert clients[0].ga_property_id == "1"

    def test_empty_roster(self, store):
        assert store.list_active_clients() == []

    def test_get_client(self, store, add_client):
        client_id = add_client("Acme", "123")
        assert store.get_client(client_id).name == "Acme"
        assert store.get_client(9999) is None


# ────────────────────────────────────────────
# UPSERT
# ────────────────────────────────────────────


class TestUpsert:

    def test_insert(self, store, add_client, session_factory):
        client_id = add_client("Acme", "123")

        store.upsert(client_id, metrics_for(date(2024, 1, 15)))

        stored = rows(session_factory, client_id)
        assert len(stored) == 1
        assert stored[0].sessions == 100
        assert stored[0].bounce_rate == 38.0
        assert stored[0].organic_sessions == 45
        assert stored[0].synced_at is not None

    def test_resync_overwrites_single_row(self, store, add_client, session_factory):
        """Re-syncing a day replaces its values and never duplicates the row."""
        client_id = add_client("Acme", "123")
        day = date(2024, 1, 15)

        store.upsert(client_id, metrics_for(day, sessions=100))
        first_synced_at = rows(session_factory, client_id)[0].synced_at
        store.upsert(client_id, metrics_for(day, sessions=120))

        stored = rows(session_factory, client_id)
        assert len(stored) == 1
        assert stored[0].sessions == 120
        assert stored[0].synced_at >= first_synced_at

    def test_unknown_organic_keeps_previous_value(self, store, add_client, session_factory):
        client_id = add_client("Acme", "123")
        day = date(2024, 1, 15)

        store.upsert(client_id, metrics_for(day, organic=45))
        store.upsert(client_id, metrics_for(day, sessions=130, organic=None))

        stored = rows(session_factory, client_id)[0]
        assert stored.sessions == 130
        assert stored.organic_sessions == 45

    def test_unknown_organic_on_new_row_is_zero(self, store, add_client, session_factory):
        client_id = add_client("Acme", "123")

        store.upsert(client_id, metrics_for(date(2024, 1, 15), organic=None))

        assert rows(session_factory, client_id)[0].organic_sessions == 0

    def test_clients_are_isolated(self, store, add_client, session_factory):
        a = add_client("A", "1")
        b = add_client("B", "2")
        day = date(2024, 1, 15)

        store.upsert(a, metrics_for(day, sessions=1))
        store.upsert(b, metrics_for(day, sessions=2))

        assert rows(session_factory, a)[0].sessions == 1
        assert rows(session_factory, b)[0].sessions == 2

    def test_unknown_client_violates_foreign_key(self, store):
        with pytest.raises(IntegrityError):
            store.upsert(9999, metrics_for(date(2024, 1, 15)))

    def test_duplicate_row_rejected_by_constraint(self, add_client, session_factory):
        client_id = add_client("Acme", "123")
        db = session_factory()
        try:
            db.add(DailyMetric(client_id=client_id, date=date(2024, 1, 15)))
            db.add(DailyMetric(client_id=client_id, date=date(2024, 1, 15)))
            with pytest.raises(IntegrityError):
                db.commit()
        finally:
            db.rollback()
            db.close()


# ────────────────────────────────────────────
# READS
# ────────────────────────────────────────────


class TestReads:

    @pytest.fixture
    def seeded(self, store, add_client):
        client_id = add_client("Acme", "123")
        store.upsert(client_id, metrics_for(date(2024, 1, 3), sessions=300, organic=30, bounce=30.0, duration=30.0))
        store.upsert(client_id, metrics_for(date(2024, 1, 1), sessions=100, organic=10, bounce=50.0, duration=60.0))
        store.upsert(client_id, metrics_for(date(2024, 1, 2), sessions=200, organic=20, bounce=40.0, duration=90.0))
        return client_id

    def test_query_ascending_within_range(self, store, seeded):
        result = store.query(seeded, date(2024, 1, 2), date(2024, 1, 3))

        assert [r["date"] for r in result] == ["2024-01-02", "2024-01-03"]
        assert result[0]["sessions"] == 200

    def test_aggregate(self, store, seeded):
        summary = store.aggregate(seeded, date(2024, 1, 1), date(2024, 1, 31))

        assert summary["total_days"] == 3
        assert summary["total_sessions"] == 600
        assert summary["total_users"] == 240
        assert summary["total_pageviews"] == 750
        assert summary["avg_session_duration"] == 60.0
        assert summary["avg_bounce_rate"] == 40.0
        assert summary["total_organic_sessions"] == 60
        assert summary["organic_percentage"] == 10.0
        assert summary["first_date"] == "2024-01-01"
        assert summary["last_date"] == "2024-01-03"

    def test_aggregate_empty_range(self, store, seeded):
        summary = store.aggregate(seeded, date(2023, 1, 1), date(2023, 1, 31))

        assert summary["total_days"] == 0
        assert summary["total_sessions"] == 0
        assert summary["avg_bounce_rate"] == 0.0
        assert summary["organic_percentage"] == 0.0
        assert summary["first_date"] is None
