from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from pointage.db import SessionLocal
from pointage.models import ScheduledEmailJob, ScheduledEmailType
from pointage.services.auto_close import AutoClosedSession, auto_close_active_sessions
from pointage.services.broadcast import BroadcastHub
from pointage.services.clock import (
    is_within_window,
    local_now,
    minute_key,
    next_daily_occurrence,
    parse_hhmm_or_default,
    sunday_based_weekday,
    utc_now,
)
from pointage.services.directory_sync import DirectorySync
from pointage.services.reminders import send_exit_reminders
from pointage.services.report_jobs import run_report_job
from pointage.services.system_settings import (
    DEFAULT_DIRECTORY_SYNC_INTERVAL_MINUTES,
    DEFAULT_MAX_SESSION_END_TIME,
    EffectiveSystemSettings,
    load_system_settings,
    record_directory_sync,
)
from pointage.settings import Settings, get_settings

logger = logging.getLogger("pointage.scheduler")

DEFAULT_EXIT_REMINDER_START = "17:25"

TaskFn = Callable[[], Awaitable[None]]
TimeProvider = Callable[[], Awaitable[time]]


class DirectorySyncer(Protocol):
    def sync(self) -> Any:
        ...


@dataclass(slots=True)
class ExitReminderState:
    window_active: bool = False
    task: asyncio.Task[None] | None = None


@dataclass(frozen=True, slots=True)
class DueEmailJob:
    id: int
    type: ScheduledEmailType
    weekday: int | None


def select_due_email_jobs(jobs: list[DueEmailJob], now: datetime) -> list[DueEmailJob]:
    today_weekday = sunday_based_weekday(now.date())
    due: list[DueEmailJob] = []
    for job in jobs:
        if job.type == ScheduledEmailType.WEEKLY_REPORT and job.weekday != today_weekday:
            continue
        due.append(job)
    return due


class SchedulerContext:
    """Owns every background duty of the process and the state they share.

    Duties are plain loops on asyncio tasks; store access runs in worker
    threads. ``shutdown`` is the only way the loops end, except the exit
    reminder window, which stops itself once the window is over.
    """

    def __init__(
        self,
        *,
        hub: BroadcastHub,
        session_factory: Callable[[], Session] = SessionLocal,
        report_runner: Callable[[int], None] = run_report_job,
        directory_sync: DirectorySyncer | None = None,
        clock: Callable[[], datetime] = local_now,
        settings: Settings | None = None,
    ) -> None:
        self.hub = hub
        self.session_factory = session_factory
        self.report_runner = report_runner
        self.directory_sync = directory_sync or DirectorySync()
        self.clock = clock
        self.settings = settings or get_settings()
        self.stop_event = asyncio.Event()
        self.tasks: dict[str, asyncio.Task[None]] = {}
        self.last_run_minute: dict[int, str] = {}
        self.exit_reminder = ExitReminderState()

    # -- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self.tasks) and not self.stop_event.is_set()

    async def start(self) -> None:
        if self.tasks:
            return
        self.stop_event.clear()

        self._spawn(
            "exit-reminder",
            self.run_daily(
                "exit-reminder",
                self._exit_reminder_start_time,
                self._open_exit_reminder_window,
                default_time=self.exit_reminder_start,
            ),
        )
        if self.is_within_exit_reminder_window(self.clock()):
            self.start_exit_reminder_window()

        self._spawn(
            "auto-close",
            self.run_daily(
                "auto-close",
                self._auto_close_time,
                self._run_auto_close,
                default_time=parse_hhmm_or_default(None, DEFAULT_MAX_SESSION_END_TIME),
            ),
        )
        self._spawn("email-jobs", self._email_poll_loop())
        self._spawn("directory-sync", self._directory_sync_loop())
        logger.info("scheduler_started", extra={"tasks": sorted(self.tasks)})

    async def shutdown(self) -> None:
        self.stop_event.set()
        await self.stop_exit_reminder_window()
        tasks = list(self.tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.tasks.clear()
        logger.info("scheduler_stopped")

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "tasks": sorted(name for name, task in self.tasks.items() if not task.done()),
            "exit_reminder_window_active": self.exit_reminder.window_active,
            "tracked_email_jobs": len(self.last_run_minute),
        }

    def _spawn(self, name: str, coro: Coroutine[Any, Any, None]) -> None:
        self.tasks[name] = asyncio.create_task(coro, name=f"scheduler:{name}")

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when shutdown was requested meanwhile."""
        if self.stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_guarded(self, name: str, task: TaskFn) -> None:
        try:
            await task()
        except Exception:
            logger.exception("scheduler_task_failed", extra={"task": name})

    # -- daily primitive ---------------------------------------------------

    async def run_daily(
        self,
        name: str,
        time_provider: TimeProvider,
        task: TaskFn,
        *,
        default_time: time,
    ) -> None:
        last_run_at: datetime | None = None
        while not self.stop_event.is_set():
            try:
                at = await time_provider()
            except Exception:
                logger.exception("scheduler_time_lookup_failed", extra={"task": name})
                at = default_time

            reference = self.clock()
            if last_run_at is not None and reference < last_run_at:
                reference = last_run_at
            next_run = next_daily_occurrence(reference, at)
            logger.info(
                "scheduler_task_scheduled",
                extra={"task": name, "next_run": next_run.isoformat()},
            )

            while (remaining := (next_run - self.clock()).total_seconds()) > 0:
                if await self._wait(remaining):
                    return

            last_run_at = next_run
            await self._run_guarded(name, task)

    # -- auto close --------------------------------------------------------

    def _load_system_settings(self) -> EffectiveSystemSettings:
        with self.session_factory() as db:
            return load_system_settings(db)

    async def _auto_close_time(self) -> time:
        settings = await asyncio.to_thread(self._load_system_settings)
        return settings.max_session_end_time

    def _auto_close_once(self) -> list[AutoClosedSession]:
        with self.session_factory() as db:
            return auto_close_active_sessions(db, now=self.clock())

    async def _run_auto_close(self) -> None:
        closed = await asyncio.to_thread(self._auto_close_once)
        logger.info("scheduler_auto_close_ran", extra={"closed_count": len(closed)})

    # -- exit reminder window ----------------------------------------------

    @property
    def exit_reminder_start(self) -> time:
        return parse_hhmm_or_default(self.settings.exit_reminder_start_time, DEFAULT_EXIT_REMINDER_START)

    async def _exit_reminder_start_time(self) -> time:
        return self.exit_reminder_start

    def is_within_exit_reminder_window(self, now: datetime) -> bool:
        return is_within_window(now, self.exit_reminder_start, self.settings.exit_reminder_window_minutes)

    async def _open_exit_reminder_window(self) -> None:
        self.start_exit_reminder_window()

    def start_exit_reminder_window(self) -> bool:
        if self.exit_reminder.window_active:
            return False
        state = self.exit_reminder
        state.window_active = True
        state.task = asyncio.create_task(
            self._exit_reminder_loop(state),
            name="scheduler:exit-reminder-window",
        )
        return True

    async def stop_exit_reminder_window(self) -> bool:
        task = self.exit_reminder.task
        self.exit_reminder = ExitReminderState()
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("exit_reminder_window_stopped")
        return True

    def _send_exit_reminders_once(self) -> int:
        with self.session_factory() as db:
            return send_exit_reminders(db, self.hub, now=self.clock())

    async def _exit_reminder_tick(self) -> None:
        await asyncio.to_thread(self._send_exit_reminders_once)

    async def _exit_reminder_loop(self, state: ExitReminderState) -> None:
        window_start = self.clock()
        logger.info(
            "exit_reminder_window_started",
            extra={
                "started_at": window_start.isoformat(),
                "window_minutes": self.settings.exit_reminder_window_minutes,
            },
        )
        try:
            await self._run_guarded("exit-reminder-tick", self._exit_reminder_tick)
            while True:
                if await self._wait(self.settings.exit_reminder_interval_seconds):
                    return
                if not self.is_within_exit_reminder_window(self.clock()):
                    logger.info("exit_reminder_window_ended")
                    return
                await self._run_guarded("exit-reminder-tick", self._exit_reminder_tick)
        finally:
            state.window_active = False
            state.task = None

    # -- scheduled email jobs ----------------------------------------------

    def _load_email_jobs_at(self, now: datetime) -> list[DueEmailJob]:
        with self.session_factory() as db:
            rows = db.scalars(
                select(ScheduledEmailJob).where(
                    ScheduledEmailJob.enabled.is_(True),
                    ScheduledEmailJob.hour == now.hour,
                    ScheduledEmailJob.minute == now.minute,
                )
            ).all()
            return [DueEmailJob(id=row.id, type=row.type, weekday=row.weekday) for row in rows]

    async def poll_email_jobs(self) -> list[int]:
        now = self.clock()
        current_key = minute_key(now)
        for job_id in [key for key, value in self.last_run_minute.items() if value != current_key]:
            del self.last_run_minute[job_id]

        jobs = await asyncio.to_thread(self._load_email_jobs_at, now)
        fired: list[int] = []
        for job in select_due_email_jobs(jobs, now):
            if self.last_run_minute.get(job.id) == current_key:
                continue
            self.last_run_minute[job.id] = current_key
            fired.append(job.id)
            logger.info(
                "email_job_due",
                extra={"job_id": job.id, "job_type": job.type.value, "minute_key": current_key},
            )
            try:
                await asyncio.to_thread(self.report_runner, job.id)
            except Exception:
                logger.exception("email_job_failed", extra={"job_id": job.id, "minute_key": current_key})
        return fired

    async def _email_poll_loop(self) -> None:
        interval_seconds = max(1, int(self.settings.email_job_poll_interval_seconds))
        while not self.stop_event.is_set():
            await self._run_guarded("email-jobs", self._poll_email_jobs_task)
            if await self._wait(interval_seconds):
                return

    async def _poll_email_jobs_task(self) -> None:
        await self.poll_email_jobs()

    # -- directory sync ----------------------------------------------------

    def _record_directory_sync(self, synced_at: datetime) -> None:
        with self.session_factory() as db:
            record_directory_sync(db, synced_at=synced_at)

    async def run_directory_sync_once(self) -> float:
        """Run one directory sync pass and return the delay in seconds before the next one."""
        default_delay = max(1, int(self.settings.directory_sync_default_interval_minutes)) * 60
        try:
            system_settings = await asyncio.to_thread(self._load_system_settings)
        except Exception:
            logger.exception("directory_sync_settings_unavailable")
            return default_delay

        if not system_settings.directory_sync_enabled:
            logger.info("directory_sync_disabled", extra={"next_check_seconds": default_delay})
            return default_delay

        interval_seconds = system_settings.directory_sync_interval_minutes * 60
        now_utc = utc_now()
        last_sync_at = system_settings.directory_last_sync_at
        if last_sync_at is not None:
            if last_sync_at.tzinfo is None:
                last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
            elapsed = (now_utc - last_sync_at).total_seconds()
            if 0 <= elapsed < interval_seconds:
                remaining = interval_seconds - elapsed
                logger.info("directory_sync_not_due", extra={"remaining_seconds": int(remaining)})
                return remaining

        try:
            result = await asyncio.to_thread(self.directory_sync.sync)
            await asyncio.to_thread(self._record_directory_sync, now_utc)
        except Exception:
            logger.exception("directory_sync_failed")
        else:
            logger.info(
                "directory_sync_completed",
                extra={"synced_count": getattr(result, "synced_count", None)},
            )
        return interval_seconds

    async def _directory_sync_loop(self) -> None:
        while not self.stop_event.is_set():
            try:
                delay = await self.run_directory_sync_once()
            except Exception:
                logger.exception("scheduler_task_failed", extra={"task": "directory-sync"})
                delay = DEFAULT_DIRECTORY_SYNC_INTERVAL_MINUTES * 60
            if await self._wait(delay):
                return

