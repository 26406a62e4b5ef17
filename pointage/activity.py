from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from pointage.models import ActivityCategory, ActivityLog

logger = logging.getLogger("pointage.activity")


def log_activity(
    db: Session,
    *,
    worker_id: int | None,
    action: str,
    details: str,
    category: ActivityCategory,
) -> None:
    """Best-effort activity trail; a failed write is logged and never raised."""
    entry = ActivityLog(
        worker_id=worker_id,
        action=action,
        details=details,
        category=category,
    )
    try:
        db.add(entry)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "activity_log_write_failed",
            extra={
                "worker_id": worker_id,
                "action": action,
                "category": category.value,
            },
        )
        return

    logger.info(
        "activity_event",
        extra={
            "worker_id": worker_id,
            "action": action,
            "details": details,
            "category": category.value,
        },
    )
