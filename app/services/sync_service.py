"""
Daily GA4 sync service
Pulls one day of metrics per active client, upserts it and audits every attempt

Clients are processed one at a time with a fixed pause between them to stay
inside GA4 Data API quotas. A failure for one client (or one backfill day)
is recorded in sync_logs and never stops the rest of the batch; only a
failure to load the roster itself propagates.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from app.config import Settings, get_settings
from app.connectors.errors import CredentialExpiredError
from app.connectors.ga4_connector import GA4Connector
from app.services.audit_log import AuditLog
from app.services.errors import ClientNotFoundError
from app.services.metrics_store import ClientRef, MetricsStore
from app.services.normalizer import normalize_daily_metrics
from app.utils.credentials import ResolvedCredentials
from app.utils.helpers import generate_date_range, parse_iso_date, yesterday_in
from app.utils.logger import log

DateLike = Union[str, date]


@dataclass
class ClientSyncResult:
    """Outcome of syncing one client for one date"""
    client_id: int
    client_name: str
    date: date
    status: str  # success, failed, partial
    records_synced: int = 0
    error: Optional[str] = None
    execution_time_ms: int = 0
    metrics: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "date": self.date.isoformat(),
            "status": self.status,
            "records_synced": self.records_synced,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "metrics": self.metrics,
        }


@dataclass
class SyncSummary:
    """Aggregate outcome of one daily batch"""
    date: date
    total_clients: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_elapsed_ms: int = 0
    results: List[ClientSyncResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failure_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "date": self.date.isoformat(),
            "total_clients": self.total_clients,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_elapsed_ms": self.total_elapsed_ms,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class BackfillSummary:
    """Aggregate outcome of a multi-day backfill for one client"""
    client_id: int
    start_date: date
    end_date: date
    total_days: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_elapsed_ms: int = 0
    results: List[ClientSyncResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failure_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "client_id": self.client_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_days": self.total_days,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_elapsed_ms": self.total_elapsed_ms,
            "results": [r.to_dict() for r in self.results],
        }


class SyncGuard:
    """
    In-flight tracking for one SyncService.

    A per-client lock keeps two syncs of the same client from overlapping
    inside this process; the batch counter lets triggers skip starting a
    second batch. Nothing here coordinates separate processes.
    """

    def __init__(self):
        self._client_locks: Dict[int, asyncio.Lock] = {}
        self._active_batches = 0

    def _lock_for(self, client_id: int) -> asyncio.Lock:
        lock = self._client_locks.get(client_id)
        if lock is None:
            lock = asyncio.Lock()
            self._client_locks[client_id] = lock
        return lock

    def is_client_syncing(self, client_id: int) -> bool:
        lock = self._client_locks.get(client_id)
        return bool(lock and lock.locked())

    @property
    def batch_running(self) -> bool:
        return self._active_batches > 0

    @asynccontextmanager
    async def client(self, client_id: int):
        lock = self._lock_for(client_id)
        if lock.locked():
            log.info(f"Sync already running for client {client_id}, waiting for it to finish")
        async with lock:
            yield

    @asynccontextmanager
    async def batch(self):
        self._active_batches += 1
        try:
            yield
        finally:
            self._active_batches -= 1


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SyncService:
    """
    Coordinates GA4 fetch, normalization, upsert and audit for every client
    """

    def __init__(
        self,
        connector: Optional[GA4Connector] = None,
        store: Optional[MetricsStore] = None,
        audit: Optional[AuditLog] = None,
        guard: Optional[SyncGuard] = None,
        settings: Optional[Settings] = None,
        inter_client_delay: Optional[float] = None,
        backfill_delay: Optional[float] = None,
        batch_deadline_seconds: Optional[float] = None,
    ):
        self.settings = settings or get_settings()
        self.connector = connector or GA4Connector(settings=self.settings)
        self.store = store or MetricsStore()
        self.audit = audit or AuditLog()
        self.guard = guard or SyncGuard()

        self.inter_client_delay = (
            self.settings.sync_inter_client_delay_seconds if inter_client_delay is None else inter_client_delay
        )
        self.backfill_delay = (
            self.settings.backfill_inter_day_delay_seconds if backfill_delay is None else backfill_delay
        )
        self.batch_deadline_seconds = (
            self.settings.sync_batch_deadline_seconds if batch_deadline_seconds is None else batch_deadline_seconds
        )

        # Progress of background runs, keyed by run name
        self.progress: Dict[str, Dict[str, Any]] = {}

    def is_batch_running(self) -> bool:
        return self.guard.batch_running

    def record_progress(self, key: str, status: str, result=None, error: Optional[str] = None):
        now = datetime.utcnow().isoformat()
        previous = self.progress.get(key, {})
        started_at = now if status == "started" else previous.get("started_at", now)
        self.progress[key] = {
            "status": status,
            "started_at": started_at,
            "updated_at": now,
            "result": result,
            "error": error,
        }

    async def sync_client_metrics(self, client: ClientRef, sync_date: date) -> ClientSyncResult:
        """
        Fetch, normalize and upsert one client-day, then write its audit entry.

        Never raises for provider or database errors: they end up in the
        returned result and in sync_logs.
        """
        async with self.guard.client(client.id):
            started = time.monotonic()
            status = "failed"
            records_synced = 0
            error = None
            metrics = None

            try:
                log.info(f"Syncing client: {client.name} ({client.ga_property_id}) for {sync_date}")
                result = await self.connector.fetch_daily_metrics(client.ga_property_id, sync_date)
                normalized = normalize_daily_metrics(result.values, fallback_date=sync_date)
                self.store.upsert(client.id, normalized)

                records_synced = 1
                metrics = normalized.to_dict()
                if result.organic_error:
                    status = "partial"
                    error = result.organic_error
                else:
                    status = "success"

            except CredentialExpiredError as e:
                error = str(e)
                log.error(f"GA4 credential expired while syncing {client.name} for {sync_date}: {error}")

            except Exception as e:
                error = str(e) or type(e).__name__
                log.error(f"Failed to sync {client.name} for {sync_date}: {error}")

            execution_time_ms = _elapsed_ms(started)
            self.audit.record(
                client_id=client.id,
                sync_date=sync_date,
                status=status,
                records_synced=records_synced,
                error_message=error,
                execution_time_ms=execution_time_ms,
            )

            if status == "success":
                log.info(f"Successfully synced {client.name} for {sync_date} ({execution_time_ms}ms)")
            elif status == "partial":
                log.warning(f"Partially synced {client.name} for {sync_date} ({execution_time_ms}ms): {error}")

            return ClientSyncResult(
                client_id=client.id,
                client_name=client.name,
                date=sync_date,
                status=status,
                records_synced=records_synced,
                error=error,
                execution_time_ms=execution_time_ms,
                metrics=metrics,
            )

    def _record_not_started(self, client: ClientRef, sync_date: date, reason: str) -> ClientSyncResult:
        log.error(f"Skipping {client.name} for {sync_date}: {reason}")
        self.audit.record(
            client_id=client.id,
            sync_date=sync_date,
            status="failed",
            records_synced=0,
            error_message=reason,
            execution_time_ms=0,
        )
        return ClientSyncResult(
            client_id=client.id,
            client_name=client.name,
            date=sync_date,
            status="failed",
            error=reason,
        )

    async def sync_all_clients(self, sync_date: DateLike) -> SyncSummary:
        """
        Sync every active client for one date, sequentially.

        Raises only if the roster cannot be loaded.
        """
        sync_date = parse_iso_date(sync_date)
        started = time.monotonic()

        log.info("=" * 60)
        log.info(f"Starting daily sync for {sync_date}")
        log.info("=" * 60)

        async with self.guard.batch():
            try:
                clients = self.store.list_active_clients()
            except Exception as e:
                log.error(f"Fatal error during sync for {sync_date}: could not load clients: {e}")
                raise

            if not clients:
                log.warning("No active clients found. Nothing to sync.")
                return SyncSummary(date=sync_date, total_elapsed_ms=_elapsed_ms(started))

            log.info(f"Found {len(clients)} active client(s) to sync")

            deadline = started + self.batch_deadline_seconds if self.batch_deadline_seconds else None
            results = []
            for index, client in enumerate(clients):
                if deadline is not None and time.monotonic() >= deadline:
                    results.append(self._record_not_started(
                        client, sync_date,
                        f"Batch deadline of {self.batch_deadline_seconds:.0f}s exceeded before sync started"
                    ))
                    continue

                results.append(await self.sync_client_metrics(client, sync_date))

                # Pause between clients to respect GA4 API limits
                if index < len(clients) - 1 and self.inter_client_delay > 0:
                    await asyncio.sleep(self.inter_client_delay)

        success_count = sum(1 for r in results if r.success)
        summary = SyncSummary(
            date=sync_date,
            total_clients=len(clients),
            success_count=success_count,
            failure_count=len(results) - success_count,
            total_elapsed_ms=_elapsed_ms(started),
            results=results,
        )

        log.info("=" * 60)
        log.info(f"Sync completed for {sync_date}")
        log.info(f"   Total clients: {summary.total_clients}")
        log.info(f"   Successful: {summary.success_count}")
        log.info(f"   Failed: {summary.failure_count}")
        log.info(f"   Total time: {summary.total_elapsed_ms}ms")
        log.info("=" * 60)

        return summary

    async def sync_yesterday(self) -> SyncSummary:
        """Sync yesterday (in the configured reference timezone) for all clients"""
        return await self.sync_all_clients(yesterday_in(self.settings.sync_timezone))

    async def run_sync_now(self) -> SyncSummary:
        """Manual / scheduled trigger"""
        log.info("Running sync manually...")
        return await self.sync_yesterday()

    async def backfill_client_data(self, client_id: int, start_date: DateLike, end_date: DateLike) -> BackfillSummary:
        """
        Sync one client day by day over an inclusive date range.

        Raises ClientNotFoundError for an unknown client and ValueError for
        a malformed or reversed range; per-day failures are only recorded.
        """
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
        dates = generate_date_range(start, end)

        client = self.store.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)

        log.info(f"Starting backfill for client {client.name} ({client_id}): {start} to {end}, {len(dates)} days")
        started = time.monotonic()

        results = []
        for index, day in enumerate(dates):
            results.append(await self.sync_client_metrics(client, day))

            # Backfill is API-call dense, pause longer than the daily batch
            if index < len(dates) - 1 and self.backfill_delay > 0:
                await asyncio.sleep(self.backfill_delay)

        success_count = sum(1 for r in results if r.success)
        summary = BackfillSummary(
            client_id=client_id,
            start_date=start,
            end_date=end,
            total_days=len(dates),
            success_count=success_count,
            failure_count=len(results) - success_count,
            total_elapsed_ms=_elapsed_ms(started),
            results=results,
        )
        log.info(
            f"Backfill completed for {client.name}: "
            f"{summary.success_count} success, {summary.failure_count} failed"
        )
        return summary


_sync_service: Optional[SyncService] = None


def init_sync_service(credentials: Optional[ResolvedCredentials] = None) -> SyncService:
    """Build the process-wide service from credentials resolved at startup"""
    global _sync_service
    _sync_service = SyncService(connector=GA4Connector(credentials=credentials))
    return _sync_service


def get_sync_service() -> SyncService:
    """Lazy-init so importing the API does not touch GA4"""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService()
    return _sync_service
