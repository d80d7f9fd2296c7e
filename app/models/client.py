"""
Client (tenant) model

One row per GA4 property being tracked.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime

from app.models.base import Base


class Client(Base):
    """A GA4 property tracked on behalf of one client"""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # GA4 Property ID (numeric string, e.g. "123456789")
    ga_property_id = Column(String(50), nullable=False, unique=True, index=True)
    timezone = Column(String(50), nullable=False, default="UTC")  # IANA timezone

    # Soft delete flag
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    daily_metrics = relationship(
        "DailyMetric",
        back_populates="client",
        cascade="all, delete-orphan",
    )
    # Sync logs outlive the client: deleting it nulls their client_id
    sync_logs = relationship("SyncLog", back_populates="client")

    def __repr__(self):
        return f"<Client {self.id} {self.name} ({self.ga_property_id})>"
