"""
Tests for the GA4 connector: request shape, error mapping, retries and
the organic sessions breakdown. Uses the fake client from conftest.
"""
import asyncio
from datetime import date

import pytest
from google.api_core import exceptions as google_exceptions
from google.auth.exceptions import RefreshError

from app.config import Settings
from app.connectors.errors import (
    REAUTH_HINT,
    AccessDeniedError,
    ConfigurationError,
    CredentialExpiredError,
    GA4Error,
    InvalidArgumentError,
    QuotaExhaustedError,
    TransientProviderError,
    map_provider_error,
)
from app.connectors.ga4_connector import GA4Connector
from app.services.normalizer import normalize_daily_metrics
from app.utils.retry import calculate_backoff, is_retryable_error

PROPERTY = "123456789"
DAY = date(2024, 1, 15)


def seed(fake, day=DAY, sessions=100, organic=45):
    fake.set_day(
        PROPERTY, day,
        organic=organic,
        sessions=sessions,
        totalUsers=80,
        newUsers=30,
        screenPageViews=250,
        averageSessionDuration=62.5,
        bounceRate=0.38,
    )


# ────────────────────────────────────────────
# SINGLE DAY FETCH
# ────────────────────────────────────────────


class TestFetchDailyMetrics:

    @pytest.mark.asyncio
    async def test_returns_header_keyed_values(self, connector, fake_ga4):
        seed(fake_ga4)

        result = await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert result.property_id == PROPERTY
        assert result.date == DAY
        assert result.values["date"] == "20240115"
        assert result.values["sessions"] == "100"
        assert result.values["bounceRate"] == "0.38"
        assert result.values["organicSessions"] == "45"
        assert result.organic_error is None

    @pytest.mark.asyncio
    async def test_issues_totals_and_organic_queries(self, connector, fake_ga4):
        seed(fake_ga4)

        await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert fake_ga4.calls == [
            ("daily", PROPERTY, "2024-01-15", "2024-01-15"),
            ("organic", PROPERTY, "2024-01-15", "2024-01-15"),
        ]

    @pytest.mark.asyncio
    async def test_zero_rows_is_a_zero_day(self, connector, fake_ga4):
        """No traffic means no rows, which is a valid all-zero day."""
        result = await connector.fetch_daily_metrics(PROPERTY, DAY)
        metrics = normalize_daily_metrics(result.values)

        assert metrics.date == DAY
        assert metrics.sessions == 0
        assert metrics.organic_sessions == 0

    @pytest.mark.asyncio
    async def test_no_organic_rows_means_zero_organic(self, connector, fake_ga4):
        seed(fake_ga4, organic=None)

        result = await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert result.values["organicSessions"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("property_id", ["", "abc", "properties/123", None])
    async def test_rejects_non_numeric_property(self, connector, fake_ga4, property_id):
        with pytest.raises(InvalidArgumentError):
            await connector.fetch_daily_metrics(property_id, DAY)
        assert fake_ga4.calls == []


# ────────────────────────────────────────────
# ERRORS AND RETRIES
# ────────────────────────────────────────────


class TestErrorsAndRetries:

    @pytest.mark.asyncio
    async def test_permission_denied_is_not_retried(self, connector, fake_ga4):
        fake_ga4.fail(PROPERTY, google_exceptions.PermissionDenied("no access"))

        with pytest.raises(AccessDeniedError) as exc_info:
            await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert "Viewer access" in str(exc_info.value)
        assert fake_ga4.count("daily") == 1

    @pytest.mark.asyncio
    async def test_quota_retried_until_success(self, connector, fake_ga4):
        seed(fake_ga4)
        fake_ga4.fail(PROPERTY, google_exceptions.ResourceExhausted("quota"), times=2)

        result = await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert result.values["sessions"] == "100"
        assert fake_ga4.count("daily") == 3
        assert result.retry_stats["retries"] >= 2

    @pytest.mark.asyncio
    async def test_transient_failure_exhausts_retry_budget(self, connector, fake_ga4):
        fake_ga4.fail(PROPERTY, google_exceptions.ServiceUnavailable("down"))

        with pytest.raises(TransientProviderError):
            await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert fake_ga4.count("daily") == connector.retry_max_attempts

    @pytest.mark.asyncio
    async def test_expired_credential_has_reauth_hint(self, connector, fake_ga4):
        fake_ga4.fail(PROPERTY, RefreshError("invalid_rapt: reauth related error"))

        with pytest.raises(CredentialExpiredError) as exc_info:
            await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert REAUTH_HINT in str(exc_info.value)
        assert fake_ga4.count("daily") == 1

    @pytest.mark.asyncio
    async def test_organic_transient_failure_degrades(self, connector, fake_ga4):
        """Totals survive when only the organic breakdown keeps failing."""
        seed(fake_ga4)
        fake_ga4.fail(PROPERTY, google_exceptions.ServiceUnavailable("down"), kind="organic")

        result = await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert result.values["sessions"] == "100"
        assert result.values["organicSessions"] is None
        assert result.organic_error.startswith("Organic sessions unavailable")

    @pytest.mark.asyncio
    async def test_organic_permission_error_propagates(self, connector, fake_ga4):
        seed(fake_ga4)
        fake_ga4.fail(PROPERTY, google_exceptions.PermissionDenied("no"), kind="organic")

        with pytest.raises(AccessDeniedError):
            await connector.fetch_daily_metrics(PROPERTY, DAY)


class TestErrorMapping:

    @pytest.mark.parametrize("error, expected", [
        (google_exceptions.PermissionDenied("x"), AccessDeniedError),
        (google_exceptions.InvalidArgument("x"), InvalidArgumentError),
        (google_exceptions.ResourceExhausted("x"), QuotaExhaustedError),
        (google_exceptions.Unauthenticated("x"), CredentialExpiredError),
        (google_exceptions.ServiceUnavailable("x"), TransientProviderError),
        (google_exceptions.DeadlineExceeded("x"), TransientProviderError),
        (google_exceptions.InternalServerError("x"), TransientProviderError),
        (ConnectionError("reset"), TransientProviderError),
        (RefreshError("invalid_grant"), CredentialExpiredError),
    ])
    def test_maps_to_taxonomy(self, error, expected):
        assert isinstance(map_provider_error(error, property_id=PROPERTY), expected)

    def test_unknown_error_is_generic_and_final(self):
        mapped = map_provider_error(RuntimeError("boom"), property_id=PROPERTY)
        assert type(mapped) is GA4Error
        assert not mapped.retryable

    def test_already_mapped_passes_through(self):
        error = QuotaExhaustedError("quota")
        assert map_provider_error(error) is error

    def test_invalid_argument_mentions_date(self):
        mapped = map_provider_error(google_exceptions.InvalidArgument("bad"), PROPERTY, "2024-01-15")
        assert "2024-01-15" in str(mapped)

    def test_retryable_flags(self):
        assert is_retryable_error(QuotaExhaustedError("q"))
        assert is_retryable_error(TransientProviderError("t"))
        assert not is_retryable_error(AccessDeniedError("a"))
        assert not is_retryable_error(CredentialExpiredError("c"))

    def test_backoff_grows_and_caps(self):
        assert calculate_backoff(1, base_delay=2, jitter=False) == 2
        assert calculate_backoff(3, base_delay=2, jitter=False) == 8
        assert calculate_backoff(10, base_delay=2, max_delay=60, jitter=False) == 60


# ────────────────────────────────────────────
# RANGE FETCH
# ────────────────────────────────────────────


class TestFetchMetricsRange:

    @pytest.mark.asyncio
    async def test_results_sorted_ascending(self, connector, fake_ga4):
        for offset, day in enumerate([date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]):
            seed(fake_ga4, day=day, sessions=10 + offset, organic=offset)
        fake_ga4.reverse_rows = True

        results = await connector.fetch_metrics_range(PROPERTY, date(2024, 1, 1), date(2024, 1, 3))

        assert [r.date for r in results] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
        assert [r.values["organicSessions"] for r in results] == ["0", "1", "2"]

    @pytest.mark.asyncio
    async def test_missing_days_are_absent(self, connector, fake_ga4):
        seed(fake_ga4, day=date(2024, 1, 1))
        seed(fake_ga4, day=date(2024, 1, 3))

        results = await connector.fetch_metrics_range(PROPERTY, date(2024, 1, 1), date(2024, 1, 3))

        assert [r.date for r in results] == [date(2024, 1, 1), date(2024, 1, 3)]

    @pytest.mark.asyncio
    async def test_range_matches_single_days(self, connector, fake_ga4):
        days = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
        for offset, day in enumerate(days):
            seed(fake_ga4, day=day, sessions=100 + offset, organic=10 + offset)

        ranged = await connector.fetch_metrics_range(PROPERTY, days[0], days[-1])

        for result, day in zip(ranged, days):
            single = await connector.fetch_daily_metrics(PROPERTY, day)
            assert normalize_daily_metrics(result.values) == normalize_daily_metrics(single.values)

    @pytest.mark.asyncio
    async def test_reversed_range_rejected(self, connector, fake_ga4):
        with pytest.raises(InvalidArgumentError):
            await connector.fetch_metrics_range(PROPERTY, date(2024, 1, 3), date(2024, 1, 1))
        assert fake_ga4.calls == []


# ────────────────────────────────────────────
# PROPERTY ACCESS CHECK
# ────────────────────────────────────────────


class TestValidatePropertyAccess:

    @pytest.mark.asyncio
    async def test_accessible(self, connector, fake_ga4):
        assert await connector.validate_property_access(PROPERTY) is True
        assert fake_ga4.count("metadata") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        google_exceptions.PermissionDenied("no"),
        google_exceptions.NotFound("missing"),
    ])
    async def test_denied_returns_false(self, connector, fake_ga4, error):
        fake_ga4.fail(PROPERTY, error, kind="metadata")
        assert await connector.validate_property_access(PROPERTY) is False

    @pytest.mark.asyncio
    async def test_expired_credential_raises(self, connector, fake_ga4):
        fake_ga4.fail(PROPERTY, google_exceptions.Unauthenticated("expired"), kind="metadata")
        with pytest.raises(CredentialExpiredError):
            await connector.validate_property_access(PROPERTY)


# ────────────────────────────────────────────
# CLIENT SETUP AND EVENT LOOP
# ────────────────────────────────────────────


def bad_settings(**overrides):
    values = {"database_url": "sqlite://", "log_to_file": False}
    values.update(overrides)
    return Settings(**values)


class TestClientSetup:

    @pytest.mark.asyncio
    async def test_unknown_auth_mode_is_a_configuration_error(self):
        connector = GA4Connector(settings=bad_settings(ga4_auth_mode="magic"))

        with pytest.raises(ConfigurationError) as exc:
            await connector.fetch_daily_metrics(PROPERTY, DAY)

        assert not isinstance(exc.value, CredentialExpiredError)
        assert exc.value.category == "configuration"
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_missing_key_file_is_a_configuration_error(self, tmp_path):
        connector = GA4Connector(settings=bad_settings(
            ga4_auth_mode="service_account_key",
            ga4_credentials_path=str(tmp_path / "absent.json"),
        ))

        with pytest.raises(ConfigurationError):
            await connector.fetch_daily_metrics(PROPERTY, DAY)

    @pytest.mark.asyncio
    async def test_connect_reports_failure(self):
        connector = GA4Connector(settings=bad_settings(ga4_auth_mode="magic"))

        assert await connector.connect() is False
        assert connector.client is None


class TestEventLoop:

    @pytest.mark.asyncio
    async def test_report_calls_leave_loop_responsive(self, connector, fake_ga4):
        seed(fake_ga4)
        fake_ga4.delay = 0.2
        ticks = 0
        done = asyncio.Event()

        async def ticker():
            nonlocal ticks
            while not done.is_set():
                ticks += 1
                await asyncio.sleep(0.01)

        task = asyncio.create_task(ticker())
        result = await connector.fetch_daily_metrics(PROPERTY, DAY)
        done.set()
        await task

        assert result.values["sessions"] == "100"
        # Two blocking calls of 0.2s each; a blocked loop would tick once
        assert ticks >= 5

    @pytest.mark.asyncio
    async def test_metadata_lookup_leaves_loop_responsive(self, connector, fake_ga4):
        fake_ga4.delay = 0.2
        ticks = 0

        async def ticker():
            nonlocal ticks
            for _ in range(100):
                ticks += 1
                await asyncio.sleep(0.01)

        task = asyncio.create_task(ticker())
        assert await connector.validate_property_access(PROPERTY) is True
        task.cancel()

        assert ticks >= 5
