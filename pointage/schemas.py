from __future__ import annotations

from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from pointage.models import PointageStatus
from pointage.services.breaks import BreakActionStatus
from pointage.services.sessions import SessionActionStatus


class PointageRead(BaseModel):
    id: int
    worker_id: int
    day: date
    entry_time: time | None = None
    exit_time: time | None = None
    duration_minutes: int
    status: PointageStatus
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("entry_time", "exit_time")
    def serialize_hhmm(self, value: time | None) -> str | None:
        return value.strftime("%H:%M") if value is not None else None


class BreakRead(BaseModel):
    id: int
    worker_id: int
    day: date
    start_time: time
    end_time: time | None = None
    duration_minutes: int | None = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("start_time", "end_time")
    def serialize_hhmm(self, value: time | None) -> str | None:
        return value.strftime("%H:%M") if value is not None else None


class PointageActionResponse(BaseModel):
    status: SessionActionStatus
    pointage: PointageRead | None = None


class BreakActionResponse(BaseModel):
    status: BreakActionStatus
    break_: BreakRead | None = Field(default=None, alias="break")

    model_config = ConfigDict(populate_by_name=True)


class TodayPointageResponse(BaseModel):
    pointage: PointageRead | None = None


class WeekStatsResponse(BaseModel):
    hours: int
    lates: int
    overtime_hours: int
