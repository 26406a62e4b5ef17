import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from pointage.db import get_db
from pointage.models import Break, Pointage
from pointage.schemas import (
    BreakActionResponse,
    BreakRead,
    PointageActionResponse,
    PointageRead,
    TodayPointageResponse,
    WeekStatsResponse,
)
from pointage.services.breaks import end_break, list_today_breaks, start_break
from pointage.services.broadcast import BroadcastEvent, get_broadcast_hub
from pointage.services.sessions import (
    RECENT_SESSIONS_DEFAULT_DAYS,
    end_session,
    get_today_session,
    get_week_stats,
    list_recent_sessions,
    start_session,
)

router = APIRouter(tags=["attendance"])
logger = logging.getLogger("pointage.events")


def _pointage_read(pointage: Pointage | None) -> PointageRead | None:
    if pointage is None:
        return None
    return PointageRead.model_validate(pointage)


def _break_read(break_entry: Break | None) -> BreakRead | None:
    if break_entry is None:
        return None
    return BreakRead.model_validate(break_entry)


@router.post("/api/workers/{worker_id}/pointages/start", response_model=PointageActionResponse)
def start_pointage(
    worker_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> PointageActionResponse:
    request.state.worker_id = worker_id
    result = start_session(db, worker_id=worker_id)
    return PointageActionResponse(status=result.status, pointage=_pointage_read(result.pointage))


@router.post("/api/workers/{worker_id}/pointages/end", response_model=PointageActionResponse)
def end_pointage(
    worker_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> PointageActionResponse:
    request.state.worker_id = worker_id
    result = end_session(db, worker_id=worker_id)
    return PointageActionResponse(status=result.status, pointage=_pointage_read(result.pointage))


@router.get("/api/workers/{worker_id}/pointages/today", response_model=TodayPointageResponse)
def today_pointage(worker_id: int, db: Session = Depends(get_db)) -> TodayPointageResponse:
    return TodayPointageResponse(pointage=_pointage_read(get_today_session(db, worker_id=worker_id)))


@router.get("/api/workers/{worker_id}/pointages/recent", response_model=list[PointageRead])
def recent_pointages(
    worker_id: int,
    days: int = Query(default=RECENT_SESSIONS_DEFAULT_DAYS, ge=1, le=366),
    db: Session = Depends(get_db),
) -> list[PointageRead]:
    pointages = list_recent_sessions(db, worker_id=worker_id, days=days)
    return [PointageRead.model_validate(item) for item in pointages]


@router.get("/api/workers/{worker_id}/pointages/week-stats", response_model=WeekStatsResponse)
def week_stats(worker_id: int, db: Session = Depends(get_db)) -> WeekStatsResponse:
    stats = get_week_stats(db, worker_id=worker_id)
    return WeekStatsResponse(hours=stats.hours, lates=stats.lates, overtime_hours=stats.overtime_hours)


@router.post("/api/workers/{worker_id}/breaks/start", response_model=BreakActionResponse)
def start_worker_break(
    worker_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> BreakActionResponse:
    request.state.worker_id = worker_id
    result = start_break(db, worker_id=worker_id)
    return BreakActionResponse(status=result.status, break_=_break_read(result.break_entry))


@router.post("/api/workers/{worker_id}/breaks/end", response_model=BreakActionResponse)
def end_worker_break(
    worker_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> BreakActionResponse:
    request.state.worker_id = worker_id
    result = end_break(db, worker_id=worker_id)
    return BreakActionResponse(status=result.status, break_=_break_read(result.break_entry))


@router.get("/api/workers/{worker_id}/breaks/today", response_model=list[BreakRead])
def today_breaks(worker_id: int, db: Session = Depends(get_db)) -> list[BreakRead]:
    return [BreakRead.model_validate(item) for item in list_today_breaks(db, worker_id=worker_id)]


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue[BroadcastEvent]) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event.to_dict())


@router.websocket("/ws/events")
async def event_stream(websocket: WebSocket) -> None:
    hub = get_broadcast_hub()
    await websocket.accept()
    queue = hub.subscribe()
    forwarder = asyncio.create_task(_forward_events(websocket, queue))
    logger.info("event_stream_opened", extra={"subscribers": hub.subscriber_count})
    try:
        # Inbound messages are ignored; receiving only surfaces the disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("event_stream_closed")
    finally:
        forwarder.cancel()
        hub.unsubscribe(queue)
