from __future__ import annotations

import unittest
from unittest.mock import patch

from pointage.models import Worker
from pointage.services.directory_sync import (
    DirectoryEntry,
    DirectorySync,
    DirectorySyncNotConfigured,
    resolve_full_name,
    sync_workers_from_directory,
    upsert_worker_from_directory,
)


class _ExecuteResult:
    def __init__(self, rowcount: int) -> None:
        self.rowcount = rowcount


class _FakeDB:
    def __init__(self, *, deactivated: int = 0, flush_error: Exception | None = None) -> None:
        self.added: list[object] = []
        self.deactivated = deactivated
        self.flush_error = flush_error
        self.executed = 0
        self.commit_count = 0
        self.rollback_count = 0

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return None

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def flush(self) -> None:
        if self.flush_error is not None:
            raise self.flush_error

    def execute(self, _statement) -> _ExecuteResult:  # type: ignore[no-untyped-def]
        self.executed += 1
        return _ExecuteResult(self.deactivated)

    def commit(self) -> None:
        self.commit_count += 1

    def rollback(self) -> None:
        self.rollback_count += 1


class _StaticSource:
    def __init__(self, entries: list[DirectoryEntry]) -> None:
        self.entries = entries

    def fetch_entries(self) -> list[DirectoryEntry]:
        return list(self.entries)


class FullNameTests(unittest.TestCase):
    def test_explicit_names_win(self) -> None:
        entry = DirectoryEntry(username="jdupont", first_name="Jeanne", last_name="Dupont", common_name="J. D.")
        self.assertEqual(resolve_full_name(entry), "Jeanne Dupont")

    def test_common_name_is_split_when_names_are_missing(self) -> None:
        entry = DirectoryEntry(username="jpm", common_name="  Jean   Pierre Martin ")
        self.assertEqual(resolve_full_name(entry), "Jean Pierre Martin")
        self.assertEqual(resolve_full_name(DirectoryEntry(username="x", last_name="Martin", common_name="Jean")), "Jean Martin")

    def test_no_names_at_all(self) -> None:
        self.assertIsNone(resolve_full_name(DirectoryEntry(username="svc")))


class UpsertTests(unittest.TestCase):
    def test_new_worker_is_created_with_normalized_email(self) -> None:
        db = _FakeDB()
        entry = DirectoryEntry(username="jdupont", email=" Jeanne.Dupont@Example.com ", common_name="Jeanne Dupont")

        worker = upsert_worker_from_directory(db, entry)  # type: ignore[arg-type]

        self.assertEqual(db.added, [worker])
        self.assertEqual(worker.email, "jeanne.dupont@example.com")
        self.assertEqual(worker.full_name, "Jeanne Dupont")
        self.assertTrue(worker.is_active)

    def test_email_owned_by_someone_else_is_not_taken(self) -> None:
        existing = Worker(id=1, username="jdupont", full_name="Jeanne Dupont", email=None, is_active=True)
        other = Worker(id=2, username="other", full_name="Other", email="shared@example.com", is_active=True)
        entry = DirectoryEntry(username="JDupont", email="shared@example.com", disabled=True)

        with (
            patch("pointage.services.directory_sync._find_by_username", return_value=existing),
            patch("pointage.services.directory_sync._find_by_email", return_value=other),
        ):
            worker = upsert_worker_from_directory(_FakeDB(), entry)  # type: ignore[arg-type]

        self.assertIs(worker, existing)
        self.assertIsNone(existing.email)
        self.assertEqual(other.email, "shared@example.com")
        self.assertFalse(existing.is_active)

    def test_worker_matched_only_by_email_takes_directory_username(self) -> None:
        owner = Worker(id=3, username="old-login", full_name="Jean Martin", email="jean@example.com", is_active=False)
        entry = DirectoryEntry(username="jmartin", email="jean@example.com", department="Ops")

        with (
            patch("pointage.services.directory_sync._find_by_username", return_value=None),
            patch("pointage.services.directory_sync._find_by_email", return_value=owner),
        ):
            worker = upsert_worker_from_directory(_FakeDB(), entry)  # type: ignore[arg-type]

        self.assertIs(worker, owner)
        self.assertEqual(owner.username, "jmartin")
        self.assertEqual(owner.department, "Ops")
        self.assertTrue(owner.is_active)


class SyncTests(unittest.TestCase):
    def test_sync_upserts_entries_and_deactivates_missing_workers(self) -> None:
        db = _FakeDB(deactivated=2)
        source = _StaticSource(
            [
                DirectoryEntry(username="jdupont", email="jeanne@example.com"),
                DirectoryEntry(username="krbtgt"),
                DirectoryEntry(username="  "),
                DirectoryEntry(username="jmartin"),
            ]
        )

        result = sync_workers_from_directory(db, source)  # type: ignore[arg-type]

        self.assertEqual(result.synced_count, 2)
        self.assertEqual(result.deactivated_count, 2)
        self.assertEqual(sorted(worker.username for worker in db.added), ["jdupont", "jmartin"])
        self.assertEqual(db.executed, 1)
        self.assertEqual(db.commit_count, 1)

    def test_empty_listing_deactivates_nobody(self) -> None:
        db = _FakeDB(deactivated=5)

        result = sync_workers_from_directory(db, _StaticSource([]))  # type: ignore[arg-type]

        self.assertEqual(result.synced_count, 0)
        self.assertEqual(result.deactivated_count, 0)
        self.assertEqual(db.executed, 0)

    def test_failed_sync_rolls_back_and_raises(self) -> None:
        db = _FakeDB(flush_error=RuntimeError("constraint violated"))

        with self.assertRaises(RuntimeError):
            sync_workers_from_directory(db, _StaticSource([DirectoryEntry(username="jdupont")]))  # type: ignore[arg-type]

        self.assertEqual(db.rollback_count, 1)
        self.assertEqual(db.commit_count, 0)

    def test_sync_without_source_is_not_configured(self) -> None:
        with self.assertRaises(DirectorySyncNotConfigured):
            DirectorySync().sync(db=_FakeDB())  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
