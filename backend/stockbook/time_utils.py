from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value: Union[None, str, date, datetime]) -> datetime:
    """
    Coerce caller input to a UTC-naive datetime, defaulting to now.

    A bare date is taken as noon of that day so that back-dated entries
    sort after anything recorded at the very start of the day.
    """
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time(12, 0))
    if isinstance(value, str):
        dt = parse_iso_datetime(value)
        if dt is None:
            raise ValueError("invalid datetime")
        if len(value.strip()) == 10:
            return dt.replace(hour=12)
        return dt
    raise ValueError("invalid datetime")


def parse_business_date(value: Union[None, str, date, datetime]) -> date:
    if value is None:
        return today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip())


def day_range(
    start: Union[None, str, date], end: Union[None, str, date]
) -> Tuple[datetime, datetime]:
    """
    Inclusive calendar-day range as a half-open datetime interval [lo, hi).
    Either bound defaults to the other; with neither, the range is today.
    """
    if start is None and end is not None:
        start = end
    start_d = parse_business_date(start)
    end_d = parse_business_date(end) if end is not None else start_d
    if end_d < start_d:
        raise ValueError("end_date is before start_date")
    lo = datetime.combine(start_d, time.min)
    hi = datetime.combine(end_d + timedelta(days=1), time.min)
    return lo, hi


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
