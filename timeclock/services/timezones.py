from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timeclock.errors import InvalidTimezoneError
from timeclock.services.events import to_utc

logger = logging.getLogger("timeclock.timezone")

UTC_ZONE = ZoneInfo("UTC")


def resolve_timezone(name: str | None) -> ZoneInfo:
    raw_name = (name or "").strip()
    if not raw_name:
        raise InvalidTimezoneError(name)
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(name) from exc


def resolve_timezone_or_utc(name: str | None) -> ZoneInfo:
    try:
        return resolve_timezone(name)
    except InvalidTimezoneError:
        logger.warning("timezone_fallback_utc", extra={"configured_timezone": name})
        return UTC_ZONE


def is_valid_timezone(name: str | None) -> bool:
    try:
        resolve_timezone(name)
    except InvalidTimezoneError:
        return False
    return True


def local_date(ts: datetime, tz: tzinfo) -> date:
    return to_utc(ts).astimezone(tz).date()


def local_day_bounds_utc(day_date: date, tz: tzinfo) -> tuple[datetime, datetime]:
    start_local = datetime.combine(day_date, time.min, tzinfo=tz)
    end_local = datetime.combine(day_date + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def local_range_bounds_utc(start_date: date, end_date: date, tz: tzinfo) -> tuple[datetime, datetime]:
    start_utc, _ = local_day_bounds_utc(start_date, tz)
    _, end_utc = local_day_bounds_utc(end_date, tz)
    return start_utc, end_utc


def combine_local(day_date: date, value: time, tz: tzinfo) -> datetime:
    return datetime.combine(day_date, value, tzinfo=tz)


def week_start(day_value: date) -> date:
    # Sunday-start weeks: date.weekday() is Monday=0 .. Sunday=6.
    return day_value - timedelta(days=(day_value.weekday() + 1) % 7)


def month_start(day_value: date) -> date:
    return day_value.replace(day=1)
