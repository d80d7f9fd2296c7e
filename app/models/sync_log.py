"""
Sync audit log

Append-only: one row per (client, date) sync attempt, whatever the outcome.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, Text, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime

from app.models.base import Base

SYNC_STATUSES = ("success", "failed", "partial")


class SyncLog(Base):
    """Outcome of one sync attempt"""
    __tablename__ = "sync_logs"
    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed', 'partial')", name="ck_sync_logs_status"),
        Index("ix_sync_logs_client_created", "client_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Nullable so the row survives client deletion
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)

    sync_date = Column(Date, nullable=False)  # The date being synced
    status = Column(String(20), nullable=False, index=True)
    records_synced = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    client = relationship("Client", back_populates="sync_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sync_date": self.sync_date.isoformat() if self.sync_date else None,
            "status": self.status,
            "records_synced": self.records_synced,
            "error_message": self.error_message,
            "execution_time_ms": self.execution_time_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<SyncLog client={self.client_id} {self.sync_date} {self.status}>"
