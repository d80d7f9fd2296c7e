"""
Sync audit log

Writes one SyncLog row per attempted (client, date) sync and answers the
monitoring questions asked of it: recent failures, last successful sync per
client, and whether the data has gone stale. Writing is best-effort: a
failed audit insert is logged and never fails the sync it describes.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from app.models.base import SessionLocal
from app.models.sync_log import SyncLog, SYNC_STATUSES
from app.utils.logger import log

MAX_ERROR_LENGTH = 2000


class AuditLog:
    """Append-only access to the sync_logs table"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def record(
        self,
        client_id: Optional[int],
        sync_date: date,
        status: str,
        records_synced: int = 0,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
    ) -> Optional[int]:
        """
        Append one entry. Returns the new row id, or None if the write failed.
        """
        if status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status '{status}'")

        db = self.session_factory()
        try:
            entry = SyncLog(
                client_id=client_id,
                sync_date=sync_date,
                status=status,
                records_synced=records_synced,
                error_message=error_message[:MAX_ERROR_LENGTH] if error_message else None,
                execution_time_ms=execution_time_ms,
            )
            db.add(entry)
            db.commit()
            log.debug(f"Sync log created: client={client_id} {sync_date} {status} | id={entry.id}")
            return entry.id
        except Exception as e:
            db.rollback()
            log.error(f"Failed to write sync log for client {client_id} ({sync_date}, {status}): {e}")
            return None
        finally:
            db.close()

    def recent(
        self,
        limit: int = 50,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Newest entries first"""
        db = self.session_factory()
        try:
            q = db.query(SyncLog)
            if status:
                q = q.filter(SyncLog.status == status)
            if client_id is not None:
                q = q.filter(SyncLog.client_id == client_id)
            rows = q.order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).limit(limit).all()
            return [row.to_dict() for row in rows]
        finally:
            db.close()

    def recent_failures(self, since_hours: float = 24, limit: int = 50) -> List[Dict[str, Any]]:
        cutoff = datetime.utcnow() - timedelta(hours=since_hours)
        db = self.session_factory()
        try:
            rows = db.query(SyncLog).filter(
                SyncLog.status == "failed",
                SyncLog.created_at >= cutoff,
            ).order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).limit(limit).all()
            return [row.to_dict() for row in rows]
        finally:
            db.close()

    def last_successful_sync(self, client_id: Optional[int] = None) -> Optional[datetime]:
        """Newest successful entry timestamp, for one client or overall"""
        db = self.session_factory()
        try:
            q = db.query(func.max(SyncLog.created_at)).filter(SyncLog.status == "success")
            if client_id is not None:
                q = q.filter(SyncLog.client_id == client_id)
            return q.scalar()
        finally:
            db.close()

    def last_successful_by_client(self) -> Dict[int, Dict[str, Any]]:
        """client_id -> last successful sync time and newest synced date"""
        db = self.session_factory()
        try:
            rows = db.query(
                SyncLog.client_id,
                func.max(SyncLog.created_at),
                func.max(SyncLog.sync_date),
            ).filter(
                SyncLog.status == "success",
                SyncLog.client_id.isnot(None),
            ).group_by(SyncLog.client_id).all()
        finally:
            db.close()

        return {
            client_id: {
                "last_success_at": last_at.isoformat() if last_at else None,
                "latest_synced_date": latest_date.isoformat() if latest_date else None,
            }
            for client_id, last_at, latest_date in rows
        }

    def is_stale(self, max_age_hours: float, now: Optional[datetime] = None) -> bool:
        """True when no successful sync happened within max_age_hours"""
        last_sync = self.last_successful_sync()
        if not last_sync:
            return True  # Never synced = stale
        now = now or datetime.utcnow()
        hours_since_sync = (now - last_sync).total_seconds() / 3600
        if hours_since_sync > max_age_hours:
            log.warning(f"Metrics are stale: {hours_since_sync:.1f} hours since last successful sync")
            return True
        return False
