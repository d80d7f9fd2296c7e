"""
Google Analytics 4 data connector
Fetches per-property daily site metrics and the organic search breakdown

This is the GA4 connector used by SyncService.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional
from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange,
    Dimension,
    Filter,
    FilterExpression,
    GetMetadataRequest,
    Metric,
    OrderBy,
    RunReportRequest,
)
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from app.connectors.base_connector import BaseConnector
from app.connectors.errors import (
    AccessDeniedError,
    ConfigurationError,
    CredentialExpiredError,
    GA4Error,
    InvalidArgumentError,
    map_provider_error,
)
from app.config import Settings, get_settings
from app.services.normalizer import (
    DATE_KEY,
    GA4_DAILY_METRICS,
    ORGANIC_SESSIONS_KEY,
    format_ga4_date,
    parse_ga4_date,
    row_to_dict,
)
from app.utils.credentials import ResolvedCredentials, resolve_credentials
from app.utils.logger import log
from app.utils.retry import RetryStats

CHANNEL_GROUP_DIMENSION = "sessionDefaultChannelGroup"


@dataclass
class MetricsResult:
    """Raw GA4 values for one property and one day, keyed by GA4 name"""
    property_id: str
    date: date
    values: Dict[str, Any]
    # Set when the organic breakdown failed but the site-wide totals did not
    organic_error: Optional[str] = None
    retry_stats: Dict[str, Any] = field(default_factory=dict)


class GA4Connector(BaseConnector):
    """Connector for the GA4 Data API, one property per call"""

    def __init__(
        self,
        credentials: Optional[ResolvedCredentials] = None,
        client=None,
        settings: Optional[Settings] = None,
        **retry_overrides
    ):
        settings = settings or get_settings()
        retry_config = {
            "retry_max_attempts": settings.ga4_retry_max_attempts,
            "retry_base_delay": settings.ga4_retry_base_delay,
            "retry_max_delay": settings.ga4_retry_max_delay,
        }
        retry_config.update(retry_overrides)
        super().__init__("Google Analytics 4", **retry_config)
        self.credentials = credentials
        self.client = client
        self.settings = settings
        self.request_timeout = settings.ga4_request_timeout_seconds
        self.organic_channel_group = settings.ga4_organic_channel_group

    async def connect(self) -> bool:
        """Build the Data API client from the resolved credential"""
        try:
            await self._ensure_client()
            return True
        except GA4Error as e:
            log.error(f"Failed to connect to GA4: {str(e)}")
            return False

    async def validate_connection(self) -> bool:
        """Validate GA4 client is available"""
        if self.client is None:
            return await self.connect()
        return True

    async def _ensure_client(self):
        if self.client is not None:
            return
        if self.credentials is None:
            try:
                self.credentials = resolve_credentials(self.settings)
            except (ValueError, OSError, auth_exceptions.DefaultCredentialsError) as e:
                raise ConfigurationError(f"GA4 credentials are misconfigured: {e}") from e
        try:
            self.client = BetaAnalyticsDataClient(credentials=self.credentials.credentials)
        except Exception as e:
            raise map_provider_error(e) from e
        log.info(f"Connected to Google Analytics 4 using {self.credentials.describe()}")

    @staticmethod
    def _check_property_id(property_id: str) -> str:
        property_id = str(property_id or "").strip()
        if not property_id.isdigit():
            raise InvalidArgumentError(
                f"Invalid GA4 property ID '{property_id}': expected a numeric string",
                property_id=property_id,
            )
        return property_id

    def _property(self, property_id: str) -> str:
        return f"properties/{property_id}"

    def _organic_filter(self) -> FilterExpression:
        return FilterExpression(
            filter=Filter(
                field_name=CHANNEL_GROUP_DIMENSION,
                string_filter=Filter.StringFilter(
                    match_type=Filter.StringFilter.MatchType.EXACT,
                    value=self.organic_channel_group,
                ),
            )
        )

    def _build_report(
        self,
        property_id: str,
        start_date: date,
        end_date: date,
        metrics,
        organic_only: bool = False,
    ) -> RunReportRequest:
        request = RunReportRequest(
            property=self._property(property_id),
            date_ranges=[DateRange(
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat()
            )],
            dimensions=[Dimension(name=DATE_KEY)],
            metrics=[Metric(name=name) for name in metrics],
            order_bys=[OrderBy(dimension=OrderBy.DimensionOrderBy(dimension_name=DATE_KEY))],
        )
        if organic_only:
            request.dimension_filter = self._organic_filter()
        return request

    async def _run_report(self, request: RunReportRequest, property_id: str, date_label: str):
        try:
            # Blocking gRPC call, kept off the event loop
            return await asyncio.to_thread(self.client.run_report, request=request, timeout=self.request_timeout)
        except Exception as e:
            raise map_provider_error(e, property_id=property_id, date_label=date_label) from e

    async def _report(
        self,
        request: RunReportRequest,
        property_id: str,
        date_label: str,
        operation_name: str,
        retry_stats: RetryStats,
    ):
        return await self._retry_operation(
            lambda: self._run_report(request, property_id, date_label),
            operation_name=operation_name,
            retry_stats=retry_stats,
        )

    async def _fetch_organic_sessions(
        self,
        property_id: str,
        start_date: date,
        end_date: date,
        date_label: str,
        retry_stats: RetryStats,
    ) -> Dict[str, int]:
        """Organic Search sessions keyed by compact GA4 date"""
        request = self._build_report(property_id, start_date, end_date, ["sessions"], organic_only=True)
        response = await self._report(request, property_id, date_label, "organic_sessions", retry_stats)
        organic = {}
        for row in response.rows:
            values = row_to_dict(response, row)
            organic[values.get(DATE_KEY)] = values.get("sessions")
        return organic

    async def _organic_or_error(self, property_id, start_date, end_date, date_label, retry_stats):
        """
        Fetch the organic breakdown, degrading to (None, message) when it
        keeps failing for a retryable reason. Configuration and credential
        problems still raise.
        """
        try:
            organic = await self._fetch_organic_sessions(property_id, start_date, end_date, date_label, retry_stats)
            return organic, None
        except GA4Error as e:
            if not e.retryable:
                raise
            log.warning(f"GA4 organic sessions unavailable for property {property_id} ({date_label}): {e}")
            return None, f"Organic sessions unavailable: {e}"

    async def fetch_daily_metrics(self, property_id: str, day: date) -> MetricsResult:
        """
        Fetch site-wide metrics plus Organic Search sessions for one day.

        Zero rows (no traffic) is not an error: the values then carry only
        the date and normalize to zeros.
        """
        property_id = self._check_property_id(property_id)
        await self._ensure_client()
        date_label = day.isoformat()
        stats = RetryStats()

        log.info(f"Fetching GA4 data for property {property_id}, date: {date_label}")

        request = self._build_report(property_id, day, day, GA4_DAILY_METRICS)
        response = await self._report(request, property_id, date_label, "daily_metrics", stats)

        if response.rows:
            values = row_to_dict(response, response.rows[0])
        else:
            values = {}
        values[DATE_KEY] = format_ga4_date(day)

        organic, organic_error = await self._organic_or_error(property_id, day, day, date_label, stats)
        if organic is None:
            values[ORGANIC_SESSIONS_KEY] = None
        else:
            values[ORGANIC_SESSIONS_KEY] = organic.get(values[DATE_KEY], 0)

        return MetricsResult(
            property_id=property_id,
            date=day,
            values=values,
            organic_error=organic_error,
            retry_stats=stats.to_dict(),
        )

    async def fetch_metrics_range(self, property_id: str, start_date: date, end_date: date) -> List[MetricsResult]:
        """
        Fetch one result per day present in GA4's response, ascending by date.

        Uses a single date-dimensioned query for the totals and a single one
        for the organic breakdown, so backfilled history keeps organic data.
        """
        property_id = self._check_property_id(property_id)
        if start_date > end_date:
            raise InvalidArgumentError(
                f"Invalid date range {start_date} to {end_date}", property_id=property_id
            )
        await self._ensure_client()
        date_label = f"{start_date.isoformat()}..{end_date.isoformat()}"
        stats = RetryStats()

        log.info(f"Fetching GA4 data range for property {property_id}: {date_label}")

        request = self._build_report(property_id, start_date, end_date, GA4_DAILY_METRICS)
        response = await self._report(request, property_id, date_label, "metrics_range", stats)
        organic, organic_error = await self._organic_or_error(property_id, start_date, end_date, date_label, stats)

        results = []
        for row in response.rows:
            values = row_to_dict(response, row)
            compact_date = values.get(DATE_KEY)
            values[ORGANIC_SESSIONS_KEY] = None if organic is None else organic.get(compact_date, 0)
            results.append(MetricsResult(
                property_id=property_id,
                date=parse_ga4_date(compact_date),
                values=values,
                organic_error=organic_error,
                retry_stats=stats.to_dict(),
            ))

        results.sort(key=lambda result: result.date)
        log.info(f"Fetched {len(results)} days of GA4 data for property {property_id}")
        return results

    async def validate_property_access(self, property_id: str) -> bool:
        """
        Lightweight metadata lookup.

        Returns False when the credential lacks Viewer access; raises for
        credential expiry and other unexpected failures.
        """
        property_id = self._check_property_id(property_id)
        await self._ensure_client()
        request = GetMetadataRequest(name=f"{self._property(property_id)}/metadata")

        async def _fetch_metadata():
            try:
                return await asyncio.to_thread(self.client.get_metadata, request=request, timeout=self.request_timeout)
            except google_exceptions.NotFound as e:
                raise AccessDeniedError(str(e), property_id=property_id) from e
            except Exception as e:
                raise map_provider_error(e, property_id=property_id) from e

        try:
            await self._retry_operation(_fetch_metadata, operation_name="validate_property_access")
            return True
        except AccessDeniedError as e:
            log.error(f"Cannot access property {property_id}: {e}")
            return False
        except CredentialExpiredError as e:
            log.error(f"Cannot validate property {property_id}: {e}")
            raise
