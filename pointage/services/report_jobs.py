from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from pointage.db import SessionLocal
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
from pointage.services.clock import format_hhmm, local_now, sunday_based_weekday, to_local_naive
from pointage.services.email import EmailAttachment, EmailChannel, OutgoingEmail, normalize_email
from pointage.services.sessions import net_worked_minutes
from pointage.services.system_settings import load_system_settings

logger = logging.getLogger("pointage.report_jobs")

REPORT_HEADERS = [
    "Date",
    "Worker",
    "Department",
    "Entry",
    "Exit",
    "Session (h:mm)",
    "Breaks (h:mm)",
    "Worked (h:mm)",
    "Status",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="1F3A5F")
LATE_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
OPEN_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(bold=True, color="1F3A5F", size=14)
THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


@dataclass(frozen=True, slots=True)
class ReportPeriod:
    start: date
    end: date
    label: str


def daily_report_period(mode: DailyReportMode, today: date) -> ReportPeriod:
    day = today if mode == DailyReportMode.TODAY else today - timedelta(days=1)
    return ReportPeriod(start=day, end=day, label=day.strftime("%d/%m/%Y"))


def last_week_period(today: date) -> ReportPeriod:
    monday_this_week = today - timedelta(days=today.weekday())
    monday_last_week = monday_this_week - timedelta(days=7)
    sunday_last_week = monday_last_week + timedelta(days=6)
    label = f"{monday_last_week.strftime('%d/%m/%Y')} - {sunday_last_week.strftime('%d/%m/%Y')}"
    return ReportPeriod(start=monday_last_week, end=sunday_last_week, label=label)


def _minutes_to_hmm(minutes: int) -> str:
    value = max(0, int(minutes))
    return f"{value // 60}:{value % 60:02d}"


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        col_letter = get_column_letter(column_cells[0].column)
        max_len = max((len(str(cell.value)) for cell in column_cells if cell.value is not None), default=0)
        ws.column_dimensions[col_letter].width = min(max(10, max_len + 2), 48)


def build_report_xlsx_bytes(
    *,
    title: str,
    workers: list[Worker],
    pointages: list[Pointage],
    breaks: list[Break],
) -> bytes:
    workers_by_id = {worker.id: worker for worker in workers}
    break_minutes: dict[tuple[int, date], int] = defaultdict(int)
    for item in breaks:
        if item.duration_minutes is not None:
            break_minutes[(item.worker_id, item.day)] += item.duration_minutes

    wb = Workbook()
    ws = wb.active
    ws.title = "Pointages"
    ws.append([title])
    ws["A1"].font = TITLE_FONT
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(REPORT_HEADERS))
    ws.append([])
    ws.append(REPORT_HEADERS)
    _style_header(ws, 3)

    total_session = 0
    total_worked = 0
    for pointage in sorted(pointages, key=lambda item: (item.day, item.worker_id, item.id)):
        worker = workers_by_id.get(pointage.worker_id)
        day_breaks = break_minutes.get((pointage.worker_id, pointage.day), 0)
        worked = net_worked_minutes(pointage.duration_minutes, day_breaks)
        if pointage.is_active:
            status_label = "open"
        else:
            status_label = pointage.status.value
        ws.append(
            [
                pointage.day.strftime("%d/%m/%Y"),
                worker.display_name if worker is not None else str(pointage.worker_id),
                (worker.department if worker is not None else None) or "-",
                format_hhmm(pointage.entry_time) or "-",
                format_hhmm(pointage.exit_time) or "-",
                _minutes_to_hmm(pointage.duration_minutes),
                _minutes_to_hmm(day_breaks),
                _minutes_to_hmm(worked),
                status_label,
            ]
        )
        row_fill = None
        if pointage.is_active:
            row_fill = OPEN_FILL
        elif pointage.status == PointageStatus.LATE:
            row_fill = LATE_FILL
        for cell in ws[ws.max_row]:
            cell.border = THIN_BORDER
            if row_fill is not None:
                cell.fill = row_fill
        total_session += pointage.duration_minutes
        total_worked += worked

    ws.append([])
    ws.append(["Total", "", "", "", "", _minutes_to_hmm(total_session), "", _minutes_to_hmm(total_worked), ""])
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)

    ws.freeze_panes = "A4"
    _auto_width(ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()


def _load_job(db: Session, job_id: int) -> ScheduledEmailJob | None:
    return db.scalar(
        select(ScheduledEmailJob)
        .options(selectinload(ScheduledEmailJob.recipients).selectinload(ScheduledEmailJobRecipient.worker))
        .where(ScheduledEmailJob.id == job_id)
    )


def _recipient_emails(job: ScheduledEmailJob) -> list[str]:
    emails: list[str] = []
    for recipient in job.recipients:
        normalized = normalize_email(recipient.worker.email if recipient.worker is not None else None)
        if normalized is not None and normalized not in emails:
            emails.append(normalized)
    return emails


def run_report_job(
    job_id: int,
    *,
    now: datetime | None = None,
    db: Session | None = None,
    channel: EmailChannel | None = None,
) -> None:
    if db is None:
        with SessionLocal() as managed_db:
            return run_report_job(job_id, now=now, db=managed_db, channel=channel)

    now_local = to_local_naive(now) if now is not None else local_now()
    today = now_local.date()
    job = _load_job(db, job_id)
    if job is None or not job.enabled:
        logger.info("report_job_missing_or_disabled", extra={"job_id": job_id})
        return

    if job.type == ScheduledEmailType.WEEKLY_REPORT and job.weekday is not None:
        today_weekday = sunday_based_weekday(today)
        if today_weekday != job.weekday:
            logger.info(
                "report_job_wrong_weekday",
                extra={"job_id": job.id, "weekday": today_weekday, "expected_weekday": job.weekday},
            )
            return

    recipients = _recipient_emails(job)
    if not recipients:
        logger.info("report_job_no_recipients", extra={"job_id": job.id})
        return

    if job.type == ScheduledEmailType.DAILY_REPORT:
        period = daily_report_period(load_system_settings(db).daily_report_mode, today)
        title = f"Daily attendance report ({period.label})"
        file_name_base = "daily_report"
    else:
        period = last_week_period(today)
        title = f"Weekly attendance report ({period.label})"
        file_name_base = "weekly_report"

    workers = list(db.scalars(select(Worker).where(Worker.is_active.is_(True))).all())
    worker_ids = [worker.id for worker in workers]
    pointages = list(
        db.scalars(
            select(Pointage).where(
                Pointage.worker_id.in_(worker_ids),
                Pointage.day >= period.start,
                Pointage.day <= period.end,
            )
        ).all()
    )
    breaks = list(
        db.scalars(
            select(Break).where(
                Break.worker_id.in_(worker_ids),
                Break.day >= period.start,
                Break.day <= period.end,
            )
        ).all()
    )

    content = build_report_xlsx_bytes(title=title, workers=workers, pointages=pointages, breaks=breaks)
    file_name = f"{file_name_base}_{today.isoformat()}.xlsx"
    logger.info(
        "report_job_rendered",
        extra={"job_id": job.id, "job_type": job.type.value, "size_bytes": len(content), "rows": len(pointages)},
    )

    result = (channel or EmailChannel()).send(
        OutgoingEmail(
            recipients=recipients,
            subject=title,
            body=title,
            attachments=[EmailAttachment(filename=file_name, content=content)],
        )
    )
    logger.info(
        "report_job_dispatched",
        extra={"job_id": job.id, "job_type": job.type.value, "mode": result.get("mode"), "sent": result.get("sent")},
    )
