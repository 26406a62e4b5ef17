from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, time

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pointage.activity import log_activity
from pointage.errors import ApiError, PersistenceError
from pointage.models import ActivityCategory, Break
from pointage.services.clock import (
    combine_local,
    format_hhmm,
    minute_of_day,
    minutes_between,
    parse_hhmm_or_default,
    to_local_naive,
    truncate_to_minute,
)
from pointage.services.sessions import _resolve_active_session, _resolve_worker
from pointage.settings import get_settings

logger = logging.getLogger("pointage.breaks")

DEFAULT_BREAK_WINDOW_START = "12:00"
DEFAULT_BREAK_WINDOW_END = "14:00"


class BreakActionStatus(str, enum.Enum):
    STARTED = "STARTED"
    ENDED = "ENDED"
    NO_OPEN_BREAK = "NO_OPEN_BREAK"


@dataclass(frozen=True, slots=True)
class BreakActionResult:
    status: BreakActionStatus
    break_entry: Break | None = None


def break_window() -> tuple[time, time]:
    settings = get_settings()
    return (
        parse_hhmm_or_default(settings.break_window_start, DEFAULT_BREAK_WINDOW_START),
        parse_hhmm_or_default(settings.break_window_end, DEFAULT_BREAK_WINDOW_END),
    )


def is_within_break_window(now: datetime, window_start: time, window_end: time) -> bool:
    current = minute_of_day(now)
    return minute_of_day(window_start) <= current <= minute_of_day(window_end)


def _resolve_open_break(db: Session, worker_id: int) -> Break | None:
    return db.scalar(
        select(Break)
        .where(
            Break.worker_id == worker_id,
            Break.end_time.is_(None),
        )
        .order_by(Break.day.desc(), Break.id.desc())
    )


def _break_already_open_error() -> ApiError:
    return ApiError(
        status_code=409,
        code="BREAK_ALREADY_OPEN",
        message="A break is already in progress.",
    )


def start_break(db: Session, *, worker_id: int, now: datetime | None = None) -> BreakActionResult:
    now_local = to_local_naive(now)
    window_start, window_end = break_window()

    try:
        _resolve_worker(db, worker_id)
        if _resolve_active_session(db, worker_id) is None:
            raise ApiError(
                status_code=409,
                code="NO_ACTIVE_SESSION",
                message="Clock in before starting a break.",
            )
        if not is_within_break_window(now_local, window_start, window_end):
            raise ApiError(
                status_code=422,
                code="OUTSIDE_BREAK_WINDOW",
                message=f"Breaks can only start between {format_hhmm(window_start)} and {format_hhmm(window_end)}.",
            )
        if _resolve_open_break(db, worker_id) is not None:
            raise _break_already_open_error()

        break_entry = Break(
            worker_id=worker_id,
            day=now_local.date(),
            start_time=truncate_to_minute(now_local).time(),
        )
        db.add(break_entry)
        db.commit()
        db.refresh(break_entry)
    except ApiError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise _break_already_open_error() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("break_start_failed", extra={"worker_id": worker_id})
        raise PersistenceError() from exc

    logger.info(
        "break_started",
        extra={
            "worker_id": worker_id,
            "break_id": break_entry.id,
            "start_time": format_hhmm(break_entry.start_time),
        },
    )
    log_activity(
        db,
        worker_id=worker_id,
        action="Break start",
        details=format_hhmm(break_entry.start_time) or "-",
        category=ActivityCategory.BREAK,
    )
    return BreakActionResult(status=BreakActionStatus.STARTED, break_entry=break_entry)


def end_break(db: Session, *, worker_id: int, now: datetime | None = None) -> BreakActionResult:
    now_local = to_local_naive(now)

    try:
        open_break = _resolve_open_break(db, worker_id)
        if open_break is None:
            return BreakActionResult(status=BreakActionStatus.NO_OPEN_BREAK)

        started_at = combine_local(open_break.day, open_break.start_time)
        open_break.end_time = truncate_to_minute(now_local).time()
        open_break.duration_minutes = minutes_between(now_local, started_at)
        db.commit()
        db.refresh(open_break)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("break_end_failed", extra={"worker_id": worker_id})
        raise PersistenceError() from exc

    logger.info(
        "break_ended",
        extra={
            "worker_id": worker_id,
            "break_id": open_break.id,
            "duration_minutes": open_break.duration_minutes,
        },
    )
    log_activity(
        db,
        worker_id=worker_id,
        action="Break end",
        details=f"{format_hhmm(open_break.end_time) or '-'} (duration: {open_break.duration_minutes} min)",
        category=ActivityCategory.BREAK,
    )
    return BreakActionResult(status=BreakActionStatus.ENDED, break_entry=open_break)


def list_today_breaks(db: Session, *, worker_id: int, now: datetime | None = None) -> list[Break]:
    today = to_local_naive(now).date()
    return list(
        db.scalars(
            select(Break)
            .where(
                Break.worker_id == worker_id,
                Break.day == today,
            )
            .order_by(Break.start_time.asc(), Break.id.asc())
        ).all()
    )
