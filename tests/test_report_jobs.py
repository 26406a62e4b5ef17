from __future__ import annotations

import unittest
from datetime import date, datetime, time
from io import BytesIO
from typing import Any
from unittest.mock import patch

from openpyxl import load_workbook

from pointage.models import (
    Break,
    DailyReportMode,
    Pointage,
    PointageStatus,
    ScheduledEmailJob,
    ScheduledEmailJobRecipient,
    ScheduledEmailType,
    Worker,
)
from pointage.services.email import OutgoingEmail
from pointage.services.report_jobs import (
    build_report_xlsx_bytes,
    daily_report_period,
    last_week_period,
    run_report_job,
)
from pointage.services.system_settings import resolve_system_settings


class _ScalarResult:
    def __init__(self, values: list[Any]) -> None:
        self._values = values

    def all(self) -> list[Any]:
        return list(self._values)


class _FakeDB:
    def __init__(self, scalars_values: list[list[Any]] | None = None) -> None:
        self.scalars_values = list(scalars_values or [])

    def scalars(self, _statement) -> _ScalarResult:  # type: ignore[no-untyped-def]
        if not self.scalars_values:
            return _ScalarResult([])
        return _ScalarResult(self.scalars_values.pop(0))


class _RecordingChannel:
    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []

    def send(self, message: OutgoingEmail) -> dict[str, Any]:
        self.sent.append(message)
        return {"mode": "sent", "sent": len(message.recipients), "recipients": message.recipients}


def _job(job_type: ScheduledEmailType, *, weekday: int | None = None, emails: list[str | None]) -> ScheduledEmailJob:
    job = ScheduledEmailJob(id=4, type=job_type, hour=8, minute=0, weekday=weekday, enabled=True)
    job.recipients = [
        ScheduledEmailJobRecipient(
            position=index,
            worker=Worker(id=index + 1, username=f"manager{index}", full_name=f"Manager {index}", email=email),
        )
        for index, email in enumerate(emails)
    ]
    return job


def _worker() -> Worker:
    return Worker(id=7, username="jdupont", full_name="Jeanne Dupont", department="Support", is_active=True)


def _pointage(day: date, *, entry: time, exit_: time | None, duration: int, status: PointageStatus) -> Pointage:
    return Pointage(
        id=day.day,
        worker_id=7,
        day=day,
        entry_time=entry,
        exit_time=exit_,
        duration_minutes=duration,
        status=status,
        is_active=exit_ is None,
    )


class ReportPeriodTests(unittest.TestCase):
    def test_daily_period_follows_report_mode(self) -> None:
        today = date(2026, 3, 4)
        self.assertEqual(daily_report_period(DailyReportMode.TODAY, today).start, today)
        yesterday = daily_report_period(DailyReportMode.YESTERDAY, today)
        self.assertEqual((yesterday.start, yesterday.end), (date(2026, 3, 3), date(2026, 3, 3)))

    def test_weekly_period_is_previous_monday_to_sunday(self) -> None:
        for today in (date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 8)):
            with self.subTest(today=today):
                period = last_week_period(today)
                self.assertEqual((period.start, period.end), (date(2026, 2, 23), date(2026, 3, 1)))
        self.assertEqual(last_week_period(date(2026, 3, 2)).label, "23/02/2026 - 01/03/2026")


class ReportWorkbookTests(unittest.TestCase):
    def test_workbook_lists_sessions_with_worked_time(self) -> None:
        content = build_report_xlsx_bytes(
            title="Daily attendance report (02/03/2026)",
            workers=[_worker()],
            pointages=[
                _pointage(date(2026, 3, 2), entry=time(9, 5), exit_=time(18, 10), duration=485, status=PointageStatus.LATE),
            ],
            breaks=[Break(worker_id=7, day=date(2026, 3, 2), start_time=time(12, 10), end_time=time(12, 55), duration_minutes=45)],
        )

        ws = load_workbook(BytesIO(content)).active
        self.assertEqual(ws["A1"].value, "Daily attendance report (02/03/2026)")
        self.assertEqual(ws["B3"].value, "Worker")
        row = [cell.value for cell in ws[4]]
        self.assertEqual(
            row,
            ["02/03/2026", "Jeanne Dupont", "Support", "09:05", "18:10", "8:05", "0:45", "7:20", "late"],
        )
        self.assertEqual(ws["A6"].value, "Total")
        self.assertEqual(ws["H6"].value, "7:20")

    def test_breaks_longer_than_the_session_never_give_negative_worked_time(self) -> None:
        content = build_report_xlsx_bytes(
            title="Daily attendance report (02/03/2026)",
            workers=[_worker()],
            pointages=[
                _pointage(date(2026, 3, 2), entry=time(12, 0), exit_=time(12, 30), duration=30, status=PointageStatus.NORMAL),
            ],
            breaks=[Break(worker_id=7, day=date(2026, 3, 2), start_time=time(12, 5), end_time=time(12, 50), duration_minutes=45)],
        )

        ws = load_workbook(BytesIO(content)).active
        self.assertEqual([cell.value for cell in ws[4]][5:8], ["0:30", "0:45", "0:00"])
        self.assertEqual(ws["H6"].value, "0:00")


class RunReportJobTests(unittest.TestCase):
    def test_daily_job_sends_workbook_to_recipients_with_email(self) -> None:
        job = _job(ScheduledEmailType.DAILY_REPORT, emails=["Boss@Example.com", None, "boss@example.com", "ops@example.com"])
        db = _FakeDB(
            [
                [_worker()],
                [_pointage(date(2026, 3, 2), entry=time(9, 0), exit_=time(18, 0), duration=480, status=PointageStatus.NORMAL)],
                [],
            ]
        )
        channel = _RecordingChannel()

        with (
            patch("pointage.services.report_jobs._load_job", return_value=job),
            patch("pointage.services.report_jobs.load_system_settings", return_value=resolve_system_settings(None)),
        ):
            run_report_job(4, now=datetime(2026, 3, 3, 8, 0), db=db, channel=channel)  # type: ignore[arg-type]

        self.assertEqual(len(channel.sent), 1)
        message = channel.sent[0]
        self.assertEqual(message.recipients, ["boss@example.com", "ops@example.com"])
        self.assertIn("02/03/2026", message.subject)
        self.assertEqual(message.attachments[0].filename, "daily_report_2026-03-03.xlsx")

    def test_weekly_job_on_wrong_weekday_is_skipped(self) -> None:
        job = _job(ScheduledEmailType.WEEKLY_REPORT, weekday=1, emails=["boss@example.com"])
        channel = _RecordingChannel()

        with patch("pointage.services.report_jobs._load_job", return_value=job):
            run_report_job(4, now=datetime(2026, 3, 4, 8, 0), db=_FakeDB(), channel=channel)  # type: ignore[arg-type]

        self.assertEqual(channel.sent, [])

    def test_job_without_usable_recipients_is_skipped(self) -> None:
        job = _job(ScheduledEmailType.DAILY_REPORT, emails=[None, "not-an-email"])
        channel = _RecordingChannel()

        with patch("pointage.services.report_jobs._load_job", return_value=job):
            run_report_job(4, now=datetime(2026, 3, 3, 8, 0), db=_FakeDB(), channel=channel)  # type: ignore[arg-type]

        self.assertEqual(channel.sent, [])

    def test_missing_or_disabled_job_is_skipped(self) -> None:
        disabled = _job(ScheduledEmailType.DAILY_REPORT, emails=["boss@example.com"])
        disabled.enabled = False
        channel = _RecordingChannel()

        for job in (None, disabled):
            with self.subTest(job=job), patch("pointage.services.report_jobs._load_job", return_value=job):
                run_report_job(4, now=datetime(2026, 3, 3, 8, 0), db=_FakeDB(), channel=channel)  # type: ignore[arg-type]

        self.assertEqual(channel.sent, [])


if __name__ == "__main__":
    unittest.main()
