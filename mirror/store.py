"""
mirror/store.py -- File-backed bulk mirror of the users table.

The mirror is secondary to the credential store: the store is canonical, the
mirror is a convenience copy for bulk import/export. Every write here is
best-effort -- failures are logged and reported as False, never raised, so a
broken mirror file cannot fail a login or a user update. A file that cannot be
read or parsed is never rewritten by the record-level writers, so an encoding
or format problem does not wipe the rows already in it.

Writes replace the whole file via a temp file + os.replace so readers never
see a half-written mirror. A process-local lock serialises read-modify-write
cycles from concurrent request threads.

Usage:
    mirror = MirrorFile("data/users.csv")
    records = mirror.read_records()
    mirror.add_record(record)
    mirror.update_record("ada@example.com", role="admin")
    mirror.save_record(record)
    mirror.export_users(store.list_all())
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
import threading
from pathlib import Path

from auth.models import User
from core.clock import now_iso
from mirror.ingest import parse_csv, to_csv
from mirror.models import MirrorRecord

logger = logging.getLogger("keyward.mirror")

_UPDATABLE = {"first_name", "last_name", "email", "password", "role", "status"}


def user_to_record(user: User) -> MirrorRecord:
    """Mirror row for a stored user. Carries the bcrypt hash, never plaintext."""
    return MirrorRecord(
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        password=user.hashed_password or "",
        role=user.role,
        status=user.status,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


class MirrorFile:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def ensure_file(self) -> None:
        """Create the parent directory and a header-only file if missing."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text(to_csv([]), encoding="utf-8")

    def _load(self) -> list[MirrorRecord]:
        """Parse the mirror, raising on any read or format failure."""
        self.ensure_file()
        return parse_csv(self.path.read_text(encoding="utf-8"))

    def read_records(self) -> list[MirrorRecord]:
        """Return every row in the mirror. An unreadable or malformed file yields []."""
        try:
            return self._load()
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.error("Could not read mirror file %s: %s", self.path, e)
            return []

    def _load_for_write(self) -> list[MirrorRecord] | None:
        # None means unreadable: writing back would drop every existing row.
        try:
            return self._load()
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.error("Mirror file %s is unreadable, not modifying it: %s", self.path, e)
            return None

    def write_records(self, records: list[MirrorRecord]) -> bool:
        """Replace the mirror contents. Returns False if the write failed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".mirror-", suffix=".csv")
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                    fh.write(to_csv(records))
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error("Could not write mirror file %s: %s", self.path, e)
            return False
        return True

    def add_record(self, record: MirrorRecord) -> bool:
        """Append one user. The record's password must already be a hash."""
        now = now_iso()
        record.created_at = record.created_at or now
        record.updated_at = record.updated_at or now
        with self._lock:
            records = self._load_for_write()
            if records is None:
                return False
            records.append(record)
            return self.write_records(records)

    def update_record(self, match_email: str, /, **changes) -> bool:
        """Update the row whose email matches `match_email` (case-insensitive).

        Accepted fields: first_name, last_name, email, password (hash), role,
        status. None values are left unchanged. Returns False when no row
        matches, the file is unreadable, or the write fails.
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown mirror fields: {unknown!r}")
        with self._lock:
            records = self._load_for_write()
            if records is None:
                return False
            record = _find(records, match_email)
            if record is None:
                return False
            for key, value in changes.items():
                if value is not None:
                    setattr(record, key, value)
            record.updated_at = now_iso()
            return self.write_records(records)

    def save_record(self, record: MirrorRecord) -> bool:
        """Replace the row with the same email, or append if there is none.

        An existing row's created_at is kept when `record` has none.
        """
        now = now_iso()
        record.updated_at = now
        with self._lock:
            records = self._load_for_write()
            if records is None:
                return False
            existing = _find(records, record.email)
            if existing is None:
                record.created_at = record.created_at or now
                records.append(record)
            else:
                record.created_at = record.created_at or existing.created_at or now
                records[next(i for i, r in enumerate(records) if r is existing)] = record
            return self.write_records(records)

    def export_users(self, users: list[User]) -> bool:
        """Overwrite the mirror with the full contents of the credential store."""
        with self._lock:
            return self.write_records([user_to_record(u) for u in users])


def _find(records: list[MirrorRecord], email: str) -> MirrorRecord | None:
    target = (email or "").strip().lower()
    for record in records:
        if record.email.strip().lower() == target:
            return record
    return None
