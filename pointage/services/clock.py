from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pointage.settings import get_settings

DEFAULT_TIMEZONE = "Europe/Paris"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except ZoneInfoNotFoundError:
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_now() -> datetime:
    """Current wall-clock time in the attendance timezone, without tzinfo."""
    return datetime.now(attendance_timezone()).replace(tzinfo=None)


def to_local_naive(value: datetime | None) -> datetime:
    if value is None:
        return local_now()
    if value.tzinfo is None:
        return value
    return value.astimezone(attendance_timezone()).replace(tzinfo=None)


def parse_hhmm(raw: str | None) -> time | None:
    normalized = (raw or "").strip()
    if not normalized:
        return None
    parts = normalized.split(":")
    if len(parts) != 2:
        return None
    hour_text, minute_text = parts
    if not hour_text.isdigit() or not minute_text.isdigit():
        return None
    hour = int(hour_text)
    minute = int(minute_text)
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        return None
    return time(hour=hour, minute=minute)


def parse_hhmm_or_default(raw: str | None, default: str) -> time:
    parsed = parse_hhmm(raw)
    if parsed is not None:
        return parsed
    fallback = parse_hhmm(default)
    if fallback is None:
        raise ValueError(f"Invalid default time: {default!r}")
    return fallback


def format_hhmm(value: time | datetime | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%H:%M")


def truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def minute_of_day(value: time | datetime) -> int:
    return value.hour * 60 + value.minute


def combine_local(day: date, at: time) -> datetime:
    return datetime.combine(day, at.replace(second=0, microsecond=0))


def minutes_between(later: datetime, earlier: datetime) -> int:
    return max(0, int((later - earlier).total_seconds() // 60))


def format_duration(minutes: int) -> str:
    return f"{minutes // 60}h{minutes % 60}m"


def next_daily_occurrence(now: datetime, at: time) -> datetime:
    """Next instant at ``at`` local time; an occurrence equal to ``now`` counts as past."""
    candidate = datetime.combine(now.date(), at.replace(second=0, microsecond=0))
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def is_within_window(now: datetime, start: time, duration_minutes: int) -> bool:
    """Inclusive at minute resolution: the whole last minute still counts as inside."""
    window_start = minute_of_day(start)
    return window_start <= minute_of_day(now) <= window_start + duration_minutes


def sunday_based_weekday(value: date) -> int:
    return value.isoweekday() % 7


def minute_key(value: datetime) -> str:
    return truncate_to_minute(value).strftime("%Y-%m-%dT%H:%M")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
