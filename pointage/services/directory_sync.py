from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from pointage.db import SessionLocal
from pointage.models import Worker
from pointage.services.email import normalize_email

logger = logging.getLogger("pointage.directory_sync")

# Accounts the directory always lists but that are not people.
IGNORED_USERNAMES = {"krbtgt", "administrator", "guest"}


class DirectorySyncNotConfigured(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    common_name: str | None = None
    department: str | None = None
    position: str | None = None
    disabled: bool = False


@dataclass(frozen=True, slots=True)
class DirectorySyncResult:
    synced_count: int
    deactivated_count: int = 0


class DirectorySource(Protocol):
    def fetch_entries(self) -> list[DirectoryEntry]:
        ...


def _clean(value: str | None) -> str | None:
    normalized = " ".join((value or "").split())
    return normalized or None


def resolve_full_name(entry: DirectoryEntry) -> str | None:
    first_name = _clean(entry.first_name)
    last_name = _clean(entry.last_name)
    common_name = _clean(entry.common_name)
    if (first_name is None or last_name is None) and common_name:
        parts = common_name.split(" ")
        if first_name is None:
            first_name = parts[0]
        if last_name is None and len(parts) > 1:
            last_name = " ".join(parts[1:])
    full_name = " ".join(part for part in (first_name, last_name) if part)
    return full_name or None


def _find_by_username(db: Session, username: str) -> Worker | None:
    return db.scalar(select(Worker).where(func.lower(Worker.username) == username.lower()))


def _find_by_email(db: Session, email: str) -> Worker | None:
    return db.scalar(select(Worker).where(func.lower(Worker.email) == email))


def upsert_worker_from_directory(db: Session, entry: DirectoryEntry) -> Worker:
    username = entry.username.strip()
    email = normalize_email(entry.email)
    full_name = resolve_full_name(entry)
    department = _clean(entry.department)
    position = _clean(entry.position)
    is_active = not entry.disabled

    existing = _find_by_username(db, username)
    email_owner = _find_by_email(db, email) if email else None
    # The email is only taken over when nobody else owns it.
    safe_email = email if email_owner is None or email_owner is existing else None

    if existing is not None:
        existing.email = safe_email or existing.email
        existing.full_name = full_name or existing.full_name
        existing.department = department or existing.department
        existing.position = position or existing.position
        existing.is_active = is_active
        return existing

    if email_owner is not None:
        email_owner.username = username
        email_owner.full_name = full_name or email_owner.full_name
        email_owner.department = department or email_owner.department
        email_owner.position = position or email_owner.position
        email_owner.is_active = is_active
        return email_owner

    worker = Worker(
        username=username,
        email=safe_email,
        full_name=full_name or username,
        department=department,
        position=position,
        is_active=is_active,
    )
    db.add(worker)
    return worker


def sync_workers_from_directory(db: Session, source: DirectorySource) -> DirectorySyncResult:
    entries = [
        entry
        for entry in source.fetch_entries()
        if entry.username.strip() and entry.username.strip().lower() not in IGNORED_USERNAMES
    ]

    seen_usernames: list[str] = []
    try:
        for entry in entries:
            upsert_worker_from_directory(db, entry)
            db.flush()
            seen_usernames.append(entry.username.strip().lower())

        deactivated_count = 0
        if seen_usernames:
            result = db.execute(
                update(Worker)
                .where(
                    Worker.is_active.is_(True),
                    func.lower(Worker.username).not_in(seen_usernames),
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            deactivated_count = int(result.rowcount or 0)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "directory_sync_applied",
        extra={"synced_count": len(seen_usernames), "deactivated_count": deactivated_count},
    )
    return DirectorySyncResult(synced_count=len(seen_usernames), deactivated_count=deactivated_count)


class DirectorySync:
    """Directory collaborator invoked by the scheduler; the source is deployment-specific."""

    def __init__(self, source: DirectorySource | None = None) -> None:
        self.source = source

    def sync(self, db: Session | None = None) -> DirectorySyncResult:
        if self.source is None:
            raise DirectorySyncNotConfigured("No directory source is configured.")
        if db is None:
            with SessionLocal() as managed_db:
                return sync_workers_from_directory(managed_db, self.source)
        return sync_workers_from_directory(db, self.source)
