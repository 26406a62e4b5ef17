from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from pointage.models import DailyReportMode, SystemSettings
from pointage.services.clock import parse_hhmm_or_default

SYSTEM_SETTINGS_ID = 1

DEFAULT_WORK_START_TIME = "08:45"
DEFAULT_MAX_SESSION_END_TIME = "20:00"
DEFAULT_BREAK_DURATION_MINUTES = 60
DEFAULT_OVERTIME_THRESHOLD_HOURS = 40
DEFAULT_DIRECTORY_SYNC_ENABLED = False
DEFAULT_DIRECTORY_SYNC_INTERVAL_MINUTES = 60
DEFAULT_DAILY_REPORT_MODE = DailyReportMode.YESTERDAY


@dataclass(frozen=True, slots=True)
class EffectiveSystemSettings:
    work_start_time: time
    max_session_end_time: time
    break_duration: int
    overtime_threshold_hours: int
    directory_sync_enabled: bool
    directory_sync_interval_minutes: int
    directory_last_sync_at: datetime | None
    daily_report_mode: DailyReportMode


def _positive_or_default(value: int | None, default: int) -> int:
    if value is None or value < 0:
        return default
    return value


def resolve_system_settings(row: SystemSettings | None) -> EffectiveSystemSettings:
    if row is None:
        return EffectiveSystemSettings(
            work_start_time=parse_hhmm_or_default(None, DEFAULT_WORK_START_TIME),
            max_session_end_time=parse_hhmm_or_default(None, DEFAULT_MAX_SESSION_END_TIME),
            break_duration=DEFAULT_BREAK_DURATION_MINUTES,
            overtime_threshold_hours=DEFAULT_OVERTIME_THRESHOLD_HOURS,
            directory_sync_enabled=DEFAULT_DIRECTORY_SYNC_ENABLED,
            directory_sync_interval_minutes=DEFAULT_DIRECTORY_SYNC_INTERVAL_MINUTES,
            directory_last_sync_at=None,
            daily_report_mode=DEFAULT_DAILY_REPORT_MODE,
        )

    interval = row.directory_sync_interval_minutes
    return EffectiveSystemSettings(
        work_start_time=parse_hhmm_or_default(row.work_start_time, DEFAULT_WORK_START_TIME),
        max_session_end_time=parse_hhmm_or_default(row.max_session_end_time, DEFAULT_MAX_SESSION_END_TIME),
        break_duration=_positive_or_default(row.break_duration, DEFAULT_BREAK_DURATION_MINUTES),
        overtime_threshold_hours=_positive_or_default(
            row.overtime_threshold_hours,
            DEFAULT_OVERTIME_THRESHOLD_HOURS,
        ),
        directory_sync_enabled=(
            bool(row.directory_sync_enabled)
            if row.directory_sync_enabled is not None
            else DEFAULT_DIRECTORY_SYNC_ENABLED
        ),
        directory_sync_interval_minutes=(
            interval if interval is not None and interval >= 1 else DEFAULT_DIRECTORY_SYNC_INTERVAL_MINUTES
        ),
        directory_last_sync_at=row.directory_last_sync_at,
        daily_report_mode=row.daily_report_mode or DEFAULT_DAILY_REPORT_MODE,
    )


def load_system_settings(db: Session) -> EffectiveSystemSettings:
    row = db.scalar(select(SystemSettings).order_by(SystemSettings.id.asc()).limit(1))
    return resolve_system_settings(row)


def record_directory_sync(db: Session, *, synced_at: datetime) -> None:
    row = db.scalar(select(SystemSettings).order_by(SystemSettings.id.asc()).limit(1))
    if row is None:
        row = SystemSettings(id=SYSTEM_SETTINGS_ID)
        db.add(row)
    row.directory_last_sync_at = synced_at
    db.commit()
