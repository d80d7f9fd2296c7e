"""
Helper utilities
"""
from datetime import date, datetime, timedelta
from typing import List, Optional, Union
from zoneinfo import ZoneInfo


def parse_iso_date(value: Union[str, date, datetime]) -> date:
    """Parse YYYY-MM-DD (or pass through a date/datetime) into a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def generate_date_range(start_date: date, end_date: date) -> List[date]:
    """All calendar days between start and end, inclusive"""
    if start_date > end_date:
        raise ValueError(f"Start date {start_date} is after end date {end_date}")
    days = (end_date - start_date).days
    return [start_date + timedelta(days=offset) for offset in range(days + 1)]


def yesterday_in(timezone_name: str, now: Optional[datetime] = None) -> date:
    """Yesterday's calendar date as seen from the given IANA timezone"""
    tz = ZoneInfo(timezone_name)
    current = now.astimezone(tz) if now else datetime.now(tz)
    return current.date() - timedelta(days=1)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default
