from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from pointage.models import Pointage
from pointage.services.broadcast import EVENT_EXIT_REMINDER, BroadcastHub, safe_emit
from pointage.services.clock import to_local_naive

logger = logging.getLogger("pointage.reminders")

EXIT_REMINDER_MESSAGE = "Don't forget to clock out before leaving."


def list_active_worker_ids_for_day(db: Session, day: date) -> list[int]:
    rows = db.scalars(
        select(Pointage.worker_id)
        .where(
            Pointage.is_active.is_(True),
            Pointage.entry_time.is_not(None),
            Pointage.day == day,
        )
        .distinct()
        .order_by(Pointage.worker_id.asc())
    ).all()
    return list(rows)


def send_exit_reminders(db: Session, hub: BroadcastHub, *, now: datetime | None = None) -> int:
    now_local = to_local_naive(now)
    worker_ids = list_active_worker_ids_for_day(db, now_local.date())
    if not worker_ids:
        logger.info("exit_reminder_no_active_sessions")
        return 0

    timestamp = now_local.isoformat()
    for worker_id in worker_ids:
        safe_emit(
            hub,
            EVENT_EXIT_REMINDER,
            {
                "workerId": worker_id,
                "message": EXIT_REMINDER_MESSAGE,
                "timestamp": timestamp,
            },
        )

    logger.info("exit_reminder_sent", extra={"worker_count": len(worker_ids)})
    return len(worker_ids)
