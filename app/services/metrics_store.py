"""
Metrics store

Reads the active client roster and writes DailyMetric rows through a single
atomic insert-or-update keyed by (client_id, date). Re-syncing a day
overwrites it and refreshes synced_at; it never creates a second row.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.models.base import SessionLocal
from app.models.client import Client
from app.models.daily_metric import DailyMetric, METRIC_FIELDS
from app.services.normalizer import DailyMetrics
from app.utils.helpers import safe_divide
from app.utils.logger import log

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class ClientRef:
    """Detached snapshot of a client row, safe to pass between sessions"""
    id: int
    name: str
    ga_property_id: str
    timezone: str = "UTC"

    @classmethod
    def from_model(cls, client: Client) -> "ClientRef":
        return cls(
            id=client.id,
            name=client.name,
            ga_property_id=client.ga_property_id,
            timezone=client.timezone or "UTC",
        )


class MetricsStore:
    """Persistence for clients' daily metrics"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    # Roster

    def list_active_clients(self) -> List[ClientRef]:
        """Active clients ordered by name. Errors propagate to the caller."""
        db = self.session_factory()
        try:
            clients = db.query(Client).filter(
                Client.is_active.is_(True)
            ).order_by(Client.name, Client.id).all()
            return [ClientRef.from_model(c) for c in clients]
        finally:
            db.close()

    def get_client(self, client_id: int) -> Optional[ClientRef]:
        db = self.session_factory()
        try:
            client = db.get(Client, client_id)
            return ClientRef.from_model(client) if client else None
        finally:
            db.close()

    # Writes

    def upsert(self, client_id: int, metrics: DailyMetrics) -> None:
        """
        Insert or overwrite the (client_id, date) row.

        When organic_sessions is None the stored organic figure is left as
        it was (0 for a new row).
        """
        values = {
            "client_id": client_id,
            "date": metrics.date,
            "sessions": metrics.sessions,
            "total_users": metrics.total_users,
            "new_users": metrics.new_users,
            "pageviews": metrics.pageviews,
            "avg_session_duration": metrics.avg_session_duration,
            "bounce_rate": metrics.bounce_rate,
            "organic_sessions": metrics.organic_sessions or 0,
            "synced_at": datetime.utcnow(),
        }
        update_columns = [name for name in METRIC_FIELDS if name != "organic_sessions"]
        if metrics.organic_sessions is not None:
            update_columns.append("organic_sessions")
        update_columns.append("synced_at")

        db = self.session_factory()
        try:
            dialect = db.get_bind().dialect.name
            insert = _DIALECT_INSERTS.get(dialect)
            if insert is not None:
                stmt = insert(DailyMetric).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["client_id", "date"],
                    set_={name: stmt.excluded[name] for name in update_columns},
                )
                db.execute(stmt)
            else:
                self._upsert_fallback(db, values, update_columns)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _upsert_fallback(db, values: Dict[str, Any], update_columns: List[str]) -> None:
        """Row-locking update-or-insert for dialects without ON CONFLICT"""
        log.debug(f"Using fallback upsert for dialect {db.get_bind().dialect.name}")
        existing = db.query(DailyMetric).filter(
            DailyMetric.client_id == values["client_id"],
            DailyMetric.date == values["date"],
        ).with_for_update().first()
        if existing:
            for name in update_columns:
                setattr(existing, name, values[name])
        else:
            db.add(DailyMetric(**values))

    # Reads

    def query(self, client_id: int, date_from: date, date_to: date) -> List[Dict[str, Any]]:
        """Daily rows within [date_from, date_to], ascending by date"""
        db = self.session_factory()
        try:
            rows = db.query(DailyMetric).filter(
                DailyMetric.client_id == client_id,
                DailyMetric.date >= date_from,
                DailyMetric.date <= date_to,
            ).order_by(DailyMetric.date.asc()).all()
            return [row.to_dict() for row in rows]
        finally:
            db.close()

    def aggregate(self, client_id: int, date_from: date, date_to: date) -> Dict[str, Any]:
        """Totals and averages over the range; an empty range gives zeros"""
        db = self.session_factory()
        try:
            row = db.query(
                func.count(DailyMetric.id),
                func.coalesce(func.sum(DailyMetric.sessions), 0),
                func.coalesce(func.sum(DailyMetric.total_users), 0),
                func.coalesce(func.sum(DailyMetric.new_users), 0),
                func.coalesce(func.sum(DailyMetric.pageviews), 0),
                func.coalesce(func.avg(DailyMetric.avg_session_duration), 0),
                func.coalesce(func.avg(DailyMetric.bounce_rate), 0),
                func.coalesce(func.sum(DailyMetric.organic_sessions), 0),
                func.min(DailyMetric.date),
                func.max(DailyMetric.date),
            ).filter(
                DailyMetric.client_id == client_id,
                DailyMetric.date >= date_from,
                DailyMetric.date <= date_to,
            ).one()
        finally:
            db.close()

        (total_days, sessions, users, new_users, pageviews,
         avg_duration, avg_bounce, organic, first_date, last_date) = row

        sessions = int(sessions or 0)
        organic = int(organic or 0)
        return {
            "client_id": client_id,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "total_days": int(total_days or 0),
            "total_sessions": sessions,
            "total_users": int(users or 0),
            "total_new_users": int(new_users or 0),
            "total_pageviews": int(pageviews or 0),
            "avg_session_duration": round(float(avg_duration or 0), 2),
            "avg_bounce_rate": round(float(avg_bounce or 0), 2),
            "total_organic_sessions": organic,
            "organic_percentage": round(safe_divide(organic * 100, sessions), 2),
            "first_date": first_date.isoformat() if first_date else None,
            "last_date": last_date.isoformat() if last_date else None,
        }
