from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pointage.activity import log_activity
from pointage.models import ActivityCategory, Pointage
from pointage.services.clock import combine_local, format_duration, format_hhmm, to_local_naive
from pointage.services.sessions import apply_session_close
from pointage.services.system_settings import load_system_settings

logger = logging.getLogger("pointage.auto_close")


@dataclass(frozen=True, slots=True)
class AutoClosedSession:
    pointage_id: int
    worker_id: int
    exit_time: str | None
    duration_minutes: int


def _list_open_sessions_for_day(db: Session, day: date) -> list[Pointage]:
    return list(
        db.scalars(
            select(Pointage)
            .where(
                Pointage.is_active.is_(True),
                Pointage.entry_time.is_not(None),
                Pointage.day == day,
            )
            .order_by(Pointage.id.asc())
        ).all()
    )


def auto_close_active_sessions(db: Session, *, now: datetime | None = None) -> list[AutoClosedSession]:
    """Close every session of the day still open at the cutoff, all or none.

    Each session is settled exactly as a clock-out at the cutoff instant would
    have settled it. A failed batch is rolled back and logged; the next daily
    run starts clean.
    """
    now_local = to_local_naive(now)
    today = now_local.date()

    try:
        settings = load_system_settings(db)
        cutoff_at = combine_local(today, settings.max_session_end_time)
        open_sessions = _list_open_sessions_for_day(db, today)
        if not open_sessions:
            db.commit()
            logger.info("auto_close_nothing_open", extra={"day": today.isoformat()})
            return []

        closed: list[AutoClosedSession] = []
        for pointage in open_sessions:
            close = apply_session_close(pointage, now=cutoff_at, settings=settings)
            closed.append(
                AutoClosedSession(
                    pointage_id=pointage.id,
                    worker_id=pointage.worker_id,
                    exit_time=format_hhmm(pointage.exit_time),
                    duration_minutes=close.duration_minutes if close is not None else 0,
                )
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("auto_close_failed", extra={"day": today.isoformat()})
        return []

    logger.info(
        "auto_close_completed",
        extra={
            "day": today.isoformat(),
            "cutoff": format_hhmm(settings.max_session_end_time),
            "closed_count": len(closed),
        },
    )
    for item in closed:
        log_activity(
            db,
            worker_id=item.worker_id,
            action="Automatic clock-out",
            details=f"{item.exit_time or '-'} (duration: {format_duration(item.duration_minutes)})",
            category=ActivityCategory.SYSTEM,
        )
    return closed
