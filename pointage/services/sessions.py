from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pointage.activity import log_activity
from pointage.errors import ApiError, PersistenceError
from pointage.models import ActivityCategory, Break, Pointage, PointageStatus, Worker
from pointage.services.broadcast import EVENT_LATE_ALERT, get_broadcast_hub, safe_emit
from pointage.services.clock import (
    combine_local,
    format_duration,
    format_hhmm,
    minute_of_day,
    minutes_between,
    to_local_naive,
    truncate_to_minute,
)
from pointage.services.system_settings import EffectiveSystemSettings, load_system_settings

logger = logging.getLogger("pointage.sessions")

RECENT_SESSIONS_DEFAULT_DAYS = 30
WEEK_STATS_DAYS = 7


class SessionActionStatus(str, enum.Enum):
    CREATED = "CREATED"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    CLOSED = "CLOSED"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"


@dataclass(frozen=True, slots=True)
class SessionActionResult:
    status: SessionActionStatus
    pointage: Pointage | None = None


@dataclass(frozen=True, slots=True)
class SessionClose:
    exit_at: datetime
    raw_minutes: int
    duration_minutes: int


@dataclass(frozen=True, slots=True)
class WeekStats:
    hours: int
    lates: int
    overtime_hours: int


def is_late(entry_at: datetime | time, work_start_time: time) -> bool:
    return minute_of_day(entry_at) > minute_of_day(work_start_time)


def compute_session_close(
    *,
    day: date,
    entry_time: time,
    now: datetime,
    max_session_end_time: time,
    break_duration: int,
) -> SessionClose:
    """Closing rule shared by clock-out, prior-day cleanup and the scheduled cutoff.

    The exit is clamped to the day's cutoff; an entry recorded after the cutoff
    closes on itself. The theoretical break is deducted only when it fits.
    """
    entry_at = combine_local(day, entry_time)
    cutoff_at = combine_local(day, max_session_end_time)

    exit_at = now if now < cutoff_at else cutoff_at
    if entry_at > cutoff_at:
        exit_at = entry_at

    raw_minutes = minutes_between(exit_at, entry_at)
    duration_minutes = raw_minutes
    if raw_minutes > break_duration:
        duration_minutes = raw_minutes - break_duration

    return SessionClose(
        exit_at=exit_at,
        raw_minutes=raw_minutes,
        duration_minutes=duration_minutes,
    )


def apply_session_close(
    pointage: Pointage,
    *,
    now: datetime,
    settings: EffectiveSystemSettings,
) -> SessionClose | None:
    if pointage.entry_time is None:
        # Nothing to measure; settle the row without a duration.
        pointage.is_active = False
        pointage.status = PointageStatus.INCOMPLETE
        return None

    close = compute_session_close(
        day=pointage.day,
        entry_time=pointage.entry_time,
        now=now,
        max_session_end_time=settings.max_session_end_time,
        break_duration=settings.break_duration,
    )
    pointage.exit_time = close.exit_at.time().replace(second=0, microsecond=0)
    pointage.duration_minutes = close.duration_minutes
    pointage.is_active = False
    return close


def _resolve_worker(db: Session, worker_id: int) -> Worker:
    # Row lock serializes session mutations of one worker.
    worker = db.scalar(select(Worker).where(Worker.id == worker_id).with_for_update())
    if worker is None:
        raise ApiError(
            status_code=404,
            code="WORKER_NOT_FOUND",
            message="Worker not found.",
        )
    if not worker.is_active:
        raise ApiError(
            status_code=403,
            code="WORKER_INACTIVE",
            message="Inactive worker cannot perform attendance actions.",
        )
    return worker


def _resolve_active_session(db: Session, worker_id: int) -> Pointage | None:
    return db.scalar(
        select(Pointage)
        .where(
            Pointage.worker_id == worker_id,
            Pointage.is_active.is_(True),
        )
        .order_by(Pointage.day.desc(), Pointage.id.desc())
    )


def start_session(db: Session, *, worker_id: int, now: datetime | None = None) -> SessionActionResult:
    now_local = to_local_naive(now)
    today = now_local.date()

    try:
        worker = _resolve_worker(db, worker_id)
        active = _resolve_active_session(db, worker_id)
        if active is not None and active.day == today:
            db.commit()
            return SessionActionResult(status=SessionActionStatus.ALREADY_ACTIVE, pointage=active)

        settings = load_system_settings(db)
        if active is not None:
            close = apply_session_close(active, now=now_local, settings=settings)
            db.flush()
            logger.info(
                "session_prior_day_closed",
                extra={
                    "worker_id": worker_id,
                    "pointage_id": active.id,
                    "pointage_day": active.day.isoformat(),
                    "duration_minutes": close.duration_minutes if close is not None else None,
                },
            )

        entry_at = truncate_to_minute(now_local)
        late = is_late(entry_at, settings.work_start_time)
        pointage = Pointage(
            worker_id=worker_id,
            day=today,
            entry_time=entry_at.time(),
            exit_time=None,
            duration_minutes=0,
            status=PointageStatus.LATE if late else PointageStatus.NORMAL,
            is_active=True,
        )
        db.add(pointage)
        db.commit()
        db.refresh(pointage)
    except IntegrityError as exc:
        db.rollback()
        try:
            winner = _resolve_active_session(db, worker_id)
        except SQLAlchemyError as reread_exc:
            db.rollback()
            logger.exception("session_start_failed", extra={"worker_id": worker_id})
            raise PersistenceError() from reread_exc
        if winner is not None and winner.day == today:
            logger.info(
                "session_start_race_resolved",
                extra={"worker_id": worker_id, "pointage_id": winner.id},
            )
            return SessionActionResult(status=SessionActionStatus.ALREADY_ACTIVE, pointage=winner)
        logger.exception("session_start_conflict", extra={"worker_id": worker_id})
        raise PersistenceError() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("session_start_failed", extra={"worker_id": worker_id})
        raise PersistenceError() from exc

    entry_text = format_hhmm(pointage.entry_time)
    logger.info(
        "session_started",
        extra={
            "worker_id": worker_id,
            "pointage_id": pointage.id,
            "entry_time": entry_text,
            "late": late,
        },
    )
    status_label = "late" if late else "on time"
    log_activity(
        db,
        worker_id=worker_id,
        action="Clock-in",
        details=f"{worker.display_name} - {entry_text} ({status_label})",
        category=ActivityCategory.POINTAGE,
    )
    if late:
        safe_emit(
            get_broadcast_hub(),
            EVENT_LATE_ALERT,
            {
                "workerId": worker_id,
                "workerName": worker.display_name,
                "timestamp": now_local.isoformat(),
            },
        )
    return SessionActionResult(status=SessionActionStatus.CREATED, pointage=pointage)


def end_session(db: Session, *, worker_id: int, now: datetime | None = None) -> SessionActionResult:
    now_local = to_local_naive(now)

    try:
        worker = _resolve_worker(db, worker_id)
        active = _resolve_active_session(db, worker_id)
        if active is None:
            db.commit()
            return SessionActionResult(status=SessionActionStatus.NO_ACTIVE_SESSION)

        settings = load_system_settings(db)
        close = apply_session_close(active, now=now_local, settings=settings)
        db.commit()
        db.refresh(active)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("session_end_failed", extra={"worker_id": worker_id})
        raise PersistenceError() from exc

    exit_text = format_hhmm(active.exit_time) or "-"
    duration = close.duration_minutes if close is not None else 0
    logger.info(
        "session_ended",
        extra={
            "worker_id": worker_id,
            "pointage_id": active.id,
            "exit_time": exit_text,
            "raw_minutes": close.raw_minutes if close is not None else None,
            "duration_minutes": duration,
        },
    )
    log_activity(
        db,
        worker_id=worker_id,
        action="Clock-out",
        details=f"{worker.display_name} - {exit_text} (duration: {format_duration(duration)})",
        category=ActivityCategory.POINTAGE,
    )
    return SessionActionResult(status=SessionActionStatus.CLOSED, pointage=active)


def get_today_session(db: Session, *, worker_id: int, now: datetime | None = None) -> Pointage | None:
    now_local = to_local_naive(now)
    pointage = db.scalar(
        select(Pointage)
        .where(
            Pointage.worker_id == worker_id,
            Pointage.day == now_local.date(),
        )
        .order_by(Pointage.id.desc())
    )
    if pointage is None or not pointage.is_active or pointage.entry_time is None:
        return pointage

    settings = load_system_settings(db)
    cutoff_at = combine_local(pointage.day, settings.max_session_end_time)
    if now_local > cutoff_at:
        result = end_session(db, worker_id=worker_id, now=now_local)
        return result.pointage or pointage
    return pointage


def list_recent_sessions(
    db: Session,
    *,
    worker_id: int,
    now: datetime | None = None,
    days: int = RECENT_SESSIONS_DEFAULT_DAYS,
) -> list[Pointage]:
    since = to_local_naive(now).date() - timedelta(days=days)
    return list(
        db.scalars(
            select(Pointage)
            .where(
                Pointage.worker_id == worker_id,
                Pointage.day >= since,
            )
            .order_by(Pointage.day.desc(), Pointage.id.desc())
        ).all()
    )


def get_week_stats(db: Session, *, worker_id: int, now: datetime | None = None) -> WeekStats:
    pointages = list_recent_sessions(db, worker_id=worker_id, now=now, days=WEEK_STATS_DAYS)
    settings = load_system_settings(db)
    total_minutes = sum(item.duration_minutes for item in pointages)
    hours = total_minutes // 60
    lates = sum(1 for item in pointages if item.status == PointageStatus.LATE)
    return WeekStats(
        hours=hours,
        lates=lates,
        overtime_hours=max(0, hours - settings.overtime_threshold_hours),
    )


def net_worked_minutes(session_minutes: int, break_minutes: int) -> int:
    return max(0, session_minutes - break_minutes)


def worked_minutes_for_day(db: Session, *, worker_id: int, day: date) -> int:
    """Session minutes of the day minus the minutes of its closed breaks."""
    session_minutes = db.scalar(
        select(func.coalesce(func.sum(Pointage.duration_minutes), 0)).where(
            Pointage.worker_id == worker_id,
            Pointage.day == day,
            Pointage.is_active.is_(False),
        )
    )
    break_minutes = db.scalar(
        select(func.coalesce(func.sum(Break.duration_minutes), 0)).where(
            Break.worker_id == worker_id,
            Break.day == day,
            Break.end_time.is_not(None),
        )
    )
    return net_worked_minutes(int(session_minutes or 0), int(break_minutes or 0))
