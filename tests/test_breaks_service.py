from __future__ import annotations

import unittest
from datetime import date, datetime, time
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from pointage.errors import ApiError
from pointage.models import ActivityCategory, ActivityLog, Break, Pointage, PointageStatus, Worker
from pointage.services.breaks import (
    BreakActionStatus,
    end_break,
    is_within_break_window,
    start_break,
)


class _FakeDB:
    def __init__(
        self,
        scalar_values: list[object | None] | None = None,
        *,
        commit_errors: list[Exception | None] | None = None,
    ) -> None:
        self.scalar_values = list(scalar_values or [])
        self.commit_errors = list(commit_errors or [])
        self.added: list[object] = []
        self.commit_count = 0
        self.rollback_count = 0

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        if not self.scalar_values:
            return None
        return self.scalar_values.pop(0)

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        if self.commit_errors:
            error = self.commit_errors.pop(0)
            if error is not None:
                raise error
        self.commit_count += 1

    def rollback(self) -> None:
        self.rollback_count += 1

    def refresh(self, obj) -> None:  # type: ignore[no-untyped-def]
        if getattr(obj, "id", None) is None:
            obj.id = 900


def _worker() -> Worker:
    return Worker(id=7, username="jdupont", full_name="Jeanne Dupont", is_active=True)


def _active_pointage() -> Pointage:
    return Pointage(
        id=40,
        worker_id=7,
        day=date(2026, 3, 2),
        entry_time=time(9, 0),
        duration_minutes=0,
        status=PointageStatus.NORMAL,
        is_active=True,
    )


def _window_patch():
    return patch("pointage.services.breaks.break_window", return_value=(time(12, 0), time(14, 0)))


class BreakWindowTests(unittest.TestCase):
    def test_window_is_inclusive_at_minute_resolution(self) -> None:
        start, end = time(12, 0), time(14, 0)
        self.assertFalse(is_within_break_window(datetime(2026, 3, 2, 11, 59, 59), start, end))
        self.assertTrue(is_within_break_window(datetime(2026, 3, 2, 12, 0), start, end))
        self.assertTrue(is_within_break_window(datetime(2026, 3, 2, 14, 0, 59), start, end))
        self.assertFalse(is_within_break_window(datetime(2026, 3, 2, 14, 1), start, end))


class StartBreakTests(unittest.TestCase):
    def test_start_break_opens_break_for_today(self) -> None:
        db = _FakeDB([_worker(), _active_pointage(), None])

        with _window_patch():
            result = start_break(db, worker_id=7, now=datetime(2026, 3, 2, 12, 30, 20))

        self.assertEqual(result.status, BreakActionStatus.STARTED)
        break_entry = result.break_entry
        self.assertEqual(break_entry.day, date(2026, 3, 2))
        self.assertEqual(break_entry.start_time, time(12, 30))
        self.assertIsNone(break_entry.end_time)

        activity = [item for item in db.added if isinstance(item, ActivityLog)]
        self.assertEqual(activity[0].action, "Break start")
        self.assertEqual(activity[0].category, ActivityCategory.BREAK)

    def test_start_break_requires_active_session(self) -> None:
        db = _FakeDB([_worker(), None])

        with _window_patch(), self.assertRaises(ApiError) as ctx:
            start_break(db, worker_id=7, now=datetime(2026, 3, 2, 12, 30))

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "NO_ACTIVE_SESSION")
        self.assertEqual(db.rollback_count, 1)

    def test_start_break_outside_window_is_rejected(self) -> None:
        db = _FakeDB([_worker(), _active_pointage()])

        with _window_patch(), self.assertRaises(ApiError) as ctx:
            start_break(db, worker_id=7, now=datetime(2026, 3, 2, 15, 0))

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.code, "OUTSIDE_BREAK_WINDOW")
        self.assertEqual(db.added, [])

    def test_second_open_break_is_rejected(self) -> None:
        open_break = Break(id=3, worker_id=7, day=date(2026, 3, 2), start_time=time(12, 5))
        db = _FakeDB([_worker(), _active_pointage(), open_break])

        with _window_patch(), self.assertRaises(ApiError) as ctx:
            start_break(db, worker_id=7, now=datetime(2026, 3, 2, 12, 30))

        self.assertEqual(ctx.exception.code, "BREAK_ALREADY_OPEN")

    def test_concurrent_open_break_maps_to_already_open(self) -> None:
        db = _FakeDB(
            [_worker(), _active_pointage(), None],
            commit_errors=[IntegrityError("INSERT", {}, Exception("duplicate key"))],
        )

        with _window_patch(), self.assertRaises(ApiError) as ctx:
            start_break(db, worker_id=7, now=datetime(2026, 3, 2, 12, 30))

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "BREAK_ALREADY_OPEN")
        self.assertEqual(db.rollback_count, 1)


class EndBreakTests(unittest.TestCase):
    def test_end_break_records_duration_from_start(self) -> None:
        open_break = Break(id=3, worker_id=7, day=date(2026, 3, 2), start_time=time(12, 10))
        db = _FakeDB([open_break])

        result = end_break(db, worker_id=7, now=datetime(2026, 3, 2, 12, 55, 40))

        self.assertEqual(result.status, BreakActionStatus.ENDED)
        self.assertEqual(open_break.end_time, time(12, 55))
        self.assertEqual(open_break.duration_minutes, 45)
        self.assertEqual(db.commit_count, 2)

    def test_end_break_without_open_break_is_soft(self) -> None:
        db = _FakeDB([None])

        result = end_break(db, worker_id=7, now=datetime(2026, 3, 2, 13, 0))

        self.assertEqual(result.status, BreakActionStatus.NO_OPEN_BREAK)
        self.assertIsNone(result.break_entry)
        self.assertEqual(db.commit_count, 0)


if __name__ == "__main__":
    unittest.main()
