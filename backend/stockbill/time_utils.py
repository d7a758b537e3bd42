from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


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


def get_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}")


def is_date_only(value: str) -> bool:
    return len(value.strip()) == 10 and "T" not in value


def local_day_start_utc(day: date, tz: ZoneInfo) -> datetime:
    """Midnight of `day` in `tz`, expressed as a UTC-naive datetime."""
    local = datetime.combine(day, time.min, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open [start, end) UTC-naive bounds of a calendar day in `tz`."""
    return local_day_start_utc(day, tz), local_day_start_utc(day + timedelta(days=1), tz)


def local_today(tz: ZoneInfo) -> date:
    return datetime.now(timezone.utc).astimezone(tz).date()


def business_timezone() -> ZoneInfo:
    """Zone configured as BUSINESS_TIMEZONE on the current app."""
    from flask import current_app
    return get_zone(current_app.config.get("BUSINESS_TIMEZONE", "UTC"))


def to_zone(dt: datetime, tz: ZoneInfo) -> datetime:
    """UTC-naive datetime -> aware datetime in `tz`."""
    return dt.replace(tzinfo=timezone.utc).astimezone(tz)
