from __future__ import annotations

import re
from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.settings import get_settings

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_YEAR_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "Asia/Taipei"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("Asia/Taipei")


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return utcnow()
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def local_date_from_utc(ts_utc: datetime) -> date:
    return normalize_ts(ts_utc).astimezone(attendance_timezone()).date()


def local_today() -> date:
    return local_date_from_utc(utcnow())


def local_day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local calendar day expressed in UTC."""
    tz = attendance_timezone()
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def parse_hhmm(value: str) -> time:
    """Parse a strict ``HH:MM`` string; raises ``ValueError`` on anything else."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    match = _HHMM_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def combine_local_utc(day: date, local_time: time) -> datetime:
    local_dt = datetime.combine(day, local_time, tzinfo=attendance_timezone())
    return local_dt.astimezone(timezone.utc)


def parse_year_month(value: str) -> tuple[int, int]:
    match = _YEAR_MONTH_RE.match((value or "").strip())
    if match is None:
        raise ValueError(f"Invalid YYYY-MM value: {value!r}")
    return int(match.group(1)), int(match.group(2))


def month_date_range(year_month: str) -> tuple[date, date]:
    year, month = parse_year_month(year_month)
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])
