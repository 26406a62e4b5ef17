from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pointage.db import Base


class PointageStatus(str, enum.Enum):
    NORMAL = "normal"
    LATE = "late"
    INCOMPLETE = "incomplete"


class ScheduledEmailType(str, enum.Enum):
    DAILY_REPORT = "DAILY_REPORT"
    WEEKLY_REPORT = "WEEKLY_REPORT"


class DailyReportMode(str, enum.Enum):
    TODAY = "TODAY"
    YESTERDAY = "YESTERDAY"


class ActivityCategory(str, enum.Enum):
    POINTAGE = "pointage"
    BREAK = "break"
    SYSTEM = "system"


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    pointages: Mapped[list[Pointage]] = relationship(back_populates="worker")
    breaks: Mapped[list[Break]] = relationship(back_populates="worker")

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or self.username


class Pointage(Base):
    """One clock-in/clock-out session of a worker for a local calendar day."""

    __tablename__ = "pointages"
    __table_args__ = (
        Index(
            "uq_pointages_worker_active",
            "worker_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_pointages_worker_date", "worker_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[int] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    entry_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    exit_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    status: Mapped[PointageStatus] = mapped_column(
        Enum(PointageStatus, name="pointage_status", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
        default=PointageStatus.NORMAL,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    worker: Mapped[Worker] = relationship(back_populates="pointages")


class Break(Base):
    __tablename__ = "breaks"
    __table_args__ = (
        Index(
            "uq_breaks_worker_open",
            "worker_id",
            unique=True,
            postgresql_where=text("end_time IS NULL"),
            sqlite_where=text("end_time IS NULL"),
        ),
        Index("ix_breaks_worker_date", "worker_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[int] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    worker: Mapped[Worker] = relationship(back_populates="breaks")


class SystemSettings(Base):
    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    max_session_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    break_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_threshold_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    directory_sync_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    directory_sync_interval_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    directory_last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_report_mode: Mapped[DailyReportMode | None] = mapped_column(
        Enum(DailyReportMode, name="daily_report_mode"),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class ScheduledEmailJob(Base):
    __tablename__ = "scheduled_email_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[ScheduledEmailType] = mapped_column(
        Enum(ScheduledEmailType, name="scheduled_email_type"),
        nullable=False,
        unique=True,
    )
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    minute: Mapped[int] = mapped_column(Integer, nullable=False)
    # 0 = Sunday ... 6 = Saturday
    weekday: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    recipients: Mapped[list[ScheduledEmailJobRecipient]] = relationship(
        back_populates="job",
        order_by="ScheduledEmailJobRecipient.position",
        cascade="all, delete-orphan",
    )


class ScheduledEmailJobRecipient(Base):
    __tablename__ = "scheduled_email_job_recipients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[int] = mapped_column(
        ForeignKey("scheduled_email_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id: Mapped[int] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    job: Mapped[ScheduledEmailJob] = relationship(back_populates="recipients")
    worker: Mapped[Worker] = relationship()


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[int | None] = mapped_column(
        ForeignKey("workers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[ActivityCategory] = mapped_column(
        Enum(ActivityCategory, name="activity_category", values_callable=lambda items: [item.value for item in items]),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
