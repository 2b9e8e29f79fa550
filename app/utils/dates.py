import calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterator, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.enums import TrendBucket


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def report_zone() -> tzinfo:
    return ZoneInfo(settings.REPORT_TIMEZONE)


def to_local(dt: datetime, tz: tzinfo) -> datetime:
    return as_utc(dt).astimezone(tz)


def day_range(start: date, end: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Inclusive bounds: start date from 00:00:00, end date through 23:59:59.999999."""
    if end < start:
        raise ValueError("end date is before start date")
    return (
        datetime.combine(start, time.min, tzinfo=tz),
        datetime.combine(end, time.max, tzinfo=tz),
    )


def month_bounds(year: int, month: int, tz: tzinfo) -> Tuple[datetime, datetime]:
    last_day = calendar.monthrange(year, month)[1]
    return day_range(date(year, month, 1), date(year, month, last_day), tz)


def parse_month(value: str) -> Tuple[int, int]:
    """'2024-05' -> (2024, 5)"""
    try:
        year, month = (int(p) for p in value.split("-"))
    except ValueError:
        raise ValueError(f"Invalid month {value!r}, expected YYYY-MM")
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month {value!r}, expected YYYY-MM")
    return year, month


def bucket_start(day: date, bucket: TrendBucket) -> date:
    if bucket == TrendBucket.WEEK:
        return day - timedelta(days=day.weekday())
    if bucket == TrendBucket.MONTH:
        return day.replace(day=1)
    return day


def iter_buckets(start: date, end: date, bucket: TrendBucket) -> Iterator[date]:
    current = bucket_start(start, bucket)
    while current <= end:
        yield current
        if bucket == TrendBucket.DAY:
            current += timedelta(days=1)
        elif bucket == TrendBucket.WEEK:
            current += timedelta(weeks=1)
        else:
            current = (current.replace(day=28) + timedelta(days=4)).replace(day=1)


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
