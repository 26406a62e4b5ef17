"""Initial pointage schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

pointage_status = postgresql.ENUM(
    "normal",
    "late",
    "incomplete",
    name="pointage_status",
    create_type=False,
)
scheduled_email_type = postgresql.ENUM(
    "DAILY_REPORT",
    "WEEKLY_REPORT",
    name="scheduled_email_type",
    create_type=False,
)
daily_report_mode = postgresql.ENUM(
    "TODAY",
    "YESTERDAY",
    name="daily_report_mode",
    create_type=False,
)
activity_category = postgresql.ENUM(
    "pointage",
    "break",
    "system",
    name="activity_category",
    create_type=False,
)


def _timestamp_column(name: str, *, index: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
        index=index,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (pointage_status, scheduled_email_type, daily_report_mode, activity_category):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "workers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("position", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.UniqueConstraint("username", name="uq_workers_username"),
        sa.UniqueConstraint("email", name="uq_workers_email"),
    )

    op.create_table(
        "pointages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("entry_time", sa.Time(), nullable=True),
        sa.Column("exit_time", sa.Time(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", pointage_status, nullable=False, server_default=sa.text("'normal'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_pointages_worker_id", "pointages", ["worker_id"])
    op.create_index("ix_pointages_date", "pointages", ["date"])
    op.create_index("ix_pointages_worker_date", "pointages", ["worker_id", "date"])
    op.create_index(
        "uq_pointages_worker_active",
        "pointages",
        ["worker_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "breaks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_breaks_worker_id", "breaks", ["worker_id"])
    op.create_index("ix_breaks_worker_date", "breaks", ["worker_id", "date"])
    op.create_index(
        "uq_breaks_worker_open",
        "breaks",
        ["worker_id"],
        unique=True,
        postgresql_where=sa.text("end_time IS NULL"),
    )

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("work_start_time", sa.String(length=5), nullable=True),
        sa.Column("max_session_end_time", sa.String(length=5), nullable=True),
        sa.Column("break_duration", sa.Integer(), nullable=True),
        sa.Column("overtime_threshold_hours", sa.Integer(), nullable=True),
        sa.Column("directory_sync_enabled", sa.Boolean(), nullable=True),
        sa.Column("directory_sync_interval_minutes", sa.Integer(), nullable=True),
        sa.Column("directory_last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("daily_report_mode", daily_report_mode, nullable=True),
        _timestamp_column("updated_at"),
    )
    op.execute(
        sa.text(
            "INSERT INTO system_settings (id, work_start_time, max_session_end_time, break_duration, "
            "overtime_threshold_hours, directory_sync_enabled, directory_sync_interval_minutes, daily_report_mode) "
            "VALUES (1, '08:45', '20:00', 60, 40, false, 60, 'YESTERDAY')"
        )
    )

    op.create_table(
        "scheduled_email_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("type", scheduled_email_type, nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("minute", sa.Integer(), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp_column("updated_at"),
        sa.UniqueConstraint("type", name="uq_scheduled_email_jobs_type"),
        sa.CheckConstraint("hour BETWEEN 0 AND 23", name="ck_scheduled_email_jobs_hour"),
        sa.CheckConstraint("minute BETWEEN 0 AND 59", name="ck_scheduled_email_jobs_minute"),
        sa.CheckConstraint(
            "weekday IS NULL OR weekday BETWEEN 0 AND 6",
            name="ck_scheduled_email_jobs_weekday",
        ),
    )

    op.create_table(
        "scheduled_email_job_recipients",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["job_id"], ["scheduled_email_jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_scheduled_email_job_recipients_job_id",
        "scheduled_email_job_recipients",
        ["job_id"],
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("details", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("category", activity_category, nullable=False),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(["worker_id"], ["workers.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_activity_logs_worker_id", "activity_logs", ["worker_id"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_created_at", table_name="activity_logs")
    op.drop_index("ix_activity_logs_worker_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_scheduled_email_job_recipients_job_id", table_name="scheduled_email_job_recipients")
    op.drop_table("scheduled_email_job_recipients")
    op.drop_table("scheduled_email_jobs")
    op.drop_table("system_settings")
    op.drop_index("uq_breaks_worker_open", table_name="breaks")
    op.drop_index("ix_breaks_worker_date", table_name="breaks")
    op.drop_index("ix_breaks_worker_id", table_name="breaks")
    op.drop_table("breaks")
    op.drop_index("uq_pointages_worker_active", table_name="pointages")
    op.drop_index("ix_pointages_worker_date", table_name="pointages")
    op.drop_index("ix_pointages_date", table_name="pointages")
    op.drop_index("ix_pointages_worker_id", table_name="pointages")
    op.drop_table("pointages")
    op.drop_table("workers")

    bind = op.get_bind()
    for enum_type in (activity_category, daily_report_mode, scheduled_email_type, pointage_status):
        enum_type.drop(bind, checkfirst=True)
