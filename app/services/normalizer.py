"""
GA4 row normalization

Pure functions that turn GA4 Data API rows (header-keyed strings, compact
YYYYMMDD dates, bounce rate as a 0-1 fraction) into the canonical daily
metrics record stored per client and day. No I/O happens here.
"""
import math
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

# GA4 metric names requested for the site-wide daily report, in request order
GA4_DAILY_METRICS = (
    "sessions",
    "totalUsers",
    "newUsers",
    "screenPageViews",
    "averageSessionDuration",
    "bounceRate",
)

DATE_KEY = "date"
ORGANIC_SESSIONS_KEY = "organicSessions"


@dataclass
class DailyMetrics:
    """Canonical per-day metrics for one client"""
    date: date
    sessions: int = 0
    total_users: int = 0
    new_users: int = 0
    pageviews: int = 0
    avg_session_duration: float = 0.0  # seconds
    bounce_rate: float = 0.0  # percentage 0-100
    # None when the organic breakdown could not be fetched
    organic_sessions: Optional[int] = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


def parse_ga4_date(value: Any) -> date:
    """Parse a GA4 date (YYYYMMDD or YYYY-MM-DD) into a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    try:
        if len(text) == 8 and text.isdigit():
            return datetime.strptime(text, "%Y%m%d").date()
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Could not parse GA4 date: {value!r}")


def format_ga4_date(value: date) -> str:
    """Compact GA4 date form (YYYYMMDD)"""
    return value.strftime("%Y%m%d")


def to_int(value: Any) -> int:
    """Parse a count, defaulting to 0 on missing, unparseable or negative values."""
    if value is None or value == "":
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
    return max(number, 0)


def to_float(value: Any) -> float:
    """Parse a duration or rate, defaulting to 0.0."""
    if value is None or value == "":
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return max(number, 0.0)


def bounce_rate_percent(value: Any) -> float:
    """GA4 reports bounce rate as a 0-1 fraction; store 0-100."""
    return round(min(to_float(value) * 100, 100.0), 2)


def row_to_dict(response, row) -> Dict[str, str]:
    """Key a report row's values by their dimension/metric header names."""
    data = {}
    for header, value in zip(response.dimension_headers, row.dimension_values):
        data[header.name] = value.value
    for header, value in zip(response.metric_headers, row.metric_values):
        data[header.name] = value.value
    return data


def normalize_daily_metrics(raw: Mapping[str, Any], fallback_date: Optional[date] = None) -> DailyMetrics:
    """
    Convert one header-keyed GA4 row into a DailyMetrics record.

    Args:
        raw: GA4 values keyed by metric/dimension name, plus organicSessions
        fallback_date: Used when the row carries no date (zero-row days)

    Raises:
        ValueError: if neither the row nor fallback_date provide a date
    """
    raw_date = raw.get(DATE_KEY)
    if raw_date:
        record_date = parse_ga4_date(raw_date)
    elif fallback_date is not None:
        record_date = fallback_date
    else:
        raise ValueError("GA4 row has no date")

    if ORGANIC_SESSIONS_KEY in raw and raw[ORGANIC_SESSIONS_KEY] is None:
        organic = None
    else:
        organic = to_int(raw.get(ORGANIC_SESSIONS_KEY))

    return DailyMetrics(
        date=record_date,
        sessions=to_int(raw.get("sessions")),
        total_users=to_int(raw.get("totalUsers")),
        new_users=to_int(raw.get("newUsers")),
        pageviews=to_int(raw.get("screenPageViews")),
        avg_session_duration=round(to_float(raw.get("averageSessionDuration")), 2),
        bounce_rate=bounce_rate_percent(raw.get("bounceRate")),
        organic_sessions=organic,
    )
