#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pointage.settings import get_settings

EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = [
    "workers",
    "pointages",
    "breaks",
    "system_settings",
    "scheduled_email_jobs",
    "scheduled_email_job_recipients",
    "activity_logs",
]


def run(database_url: str | None = None) -> dict[str, Any]:
    engine = create_engine(database_url or get_settings().database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        duplicate_active = conn.execute(
            text(
                """
                select worker_id, count(*)
                from pointages
                where is_active = true
                group by worker_id
                having count(*) > 1
                """
            )
        ).fetchall()
        add(
            "duplicate_active_pointages",
            "fail" if duplicate_active else "ok",
            {"rows": [list(row) for row in duplicate_active]},
        )

        stale_active = conn.execute(
            text(
                """
                select id, worker_id, date
                from pointages
                where is_active = true
                  and date < current_date
                order by date asc
                limit 20
                """
            )
        ).fetchall()
        add(
            "stale_active_pointages",
            "warn" if stale_active else "ok",
            {"sample": [[row[0], row[1], str(row[2])] for row in stale_active]},
        )

        orphan_open_breaks = conn.execute(
            text(
                """
                select b.id, b.worker_id
                from breaks b
                left join pointages p on p.worker_id = b.worker_id and p.is_active = true
                where b.end_time is null
                  and p.id is null
                limit 20
                """
            )
        ).fetchall()
        add(
            "open_breaks_without_session",
            "warn" if orphan_open_breaks else "ok",
            {"sample": [list(row) for row in orphan_open_breaks]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
