"""
Timezone and date helpers for the sync jobs.

All timestamps are stored as naive UTC datetimes. Provider timestamps are
converted with ``to_naive_utc`` at the adapter boundary so that time
distances computed by the matchers never mix aware and naive values.

"Today" for odds and edges is the local date of the configured timezone
(America/New_York by default), because slates are published in ET.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(raw: str) -> datetime:
    """
    Parse an ISO-8601 provider timestamp into naive UTC.

    Accepts a trailing ``Z`` and plain dates (``2024-01-15`` → midnight UTC).

    Examples:
        >>> parse_timestamp("2024-01-15T19:30:00Z")
        datetime.datetime(2024, 1, 15, 19, 30)
        >>> parse_timestamp("2024-01-15")
        datetime.datetime(2024, 1, 15, 0, 0)
    """
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def today_local(tz_name: Optional[str] = None) -> date:
    """Today's date in the configured local timezone."""
    return datetime.now(ZoneInfo(tz_name or settings.LOCAL_TIMEZONE)).date()


def local_day_bounds_utc(day: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    Naive UTC [start, end) bounds of a local calendar day.

    Used to select the games that belong to a local slate date.
    """
    tz = ZoneInfo(tz_name or settings.LOCAL_TIMEZONE)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return to_naive_utc(start), to_naive_utc(end)


def local_date_of(value: datetime, tz_name: Optional[str] = None) -> date:
    """Local calendar date of a naive UTC datetime."""
    tz = ZoneInfo(tz_name or settings.LOCAL_TIMEZONE)
    return value.replace(tzinfo=timezone.utc).astimezone(tz).date()


def utc_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Naive UTC [start, end) bounds of a UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def date_range(start: date, end: date) -> List[date]:
    """Inclusive list of dates from start to end; empty if end < start."""
    return list(iter_dates(start, end))


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def recent_dates(days: int, until: Optional[date] = None) -> List[date]:
    """The last ``days`` dates ending at ``until`` (default: today UTC), newest first."""
    end = until or utcnow().date()
    return [end - timedelta(days=offset) for offset in range(days)]


def decade_bucket(year: int) -> str:
    """
    Decade label used for era filtering.

    Examples:
        >>> decade_bucket(2019)
        '2010s'
        >>> decade_bucket(2020)
        '2020s'
    """
    return f"{(year // 10) * 10}s"
