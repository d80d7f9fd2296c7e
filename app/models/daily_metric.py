"""
Daily GA4 metrics, one row per client per calendar date
"""
from sqlalchemy import Column, Integer, Float, Date, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime

from app.models.base import Base

# Persisted metric fields, in export order
METRIC_FIELDS = (
    "sessions",
    "total_users",
    "new_users",
    "pageviews",
    "avg_session_duration",
    "bounce_rate",
    "organic_sessions",
)


class DailyMetric(Base):
    """Site-wide GA4 metrics for one client and one day"""
    __tablename__ = "daily_metrics"
    __table_args__ = (
        UniqueConstraint("client_id", "date", name="uq_daily_metrics_client_date"),
        CheckConstraint("bounce_rate >= 0 AND bounce_rate <= 100", name="ck_daily_metrics_bounce_rate"),
        Index("ix_daily_metrics_client_date", "client_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)

    # The day the metrics represent
    date = Column(Date, nullable=False, index=True)

    # Core GA4 metrics
    sessions = Column(Integer, nullable=False, default=0)
    total_users = Column(Integer, nullable=False, default=0)
    new_users = Column(Integer, nullable=False, default=0)
    pageviews = Column(Integer, nullable=False, default=0)
    avg_session_duration = Column(Float, nullable=False, default=0.0)  # seconds
    bounce_rate = Column(Float, nullable=False, default=0.0)  # percentage 0-100

    # Sessions from the Organic Search channel (subset of sessions)
    organic_sessions = Column(Integer, nullable=False, default=0)

    # Metadata
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    client = relationship("Client", back_populates="daily_metrics")

    def to_dict(self) -> dict:
        data = {"client_id": self.client_id, "date": self.date.isoformat()}
        for name in METRIC_FIELDS:
            data[name] = getattr(self, name)
        data["synced_at"] = self.synced_at.isoformat() if self.synced_at else None
        return data

    def __repr__(self):
        return f"<DailyMetric client={self.client_id} {self.date}>"
