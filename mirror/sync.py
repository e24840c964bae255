"""
mirror/sync.py -- One-way, add-only merge of mirror records into the store.

reconcile() is the Bulk Mirror Sync contract:
  - for each record with both an email and a password, create the identity
    if its email is not in the store yet;
  - copy role/status, defaulting to "user"/"active" when blank;
  - never overwrite or delete an existing identity;
  - never re-hash the password.

Trust boundary: mirror passwords are expected to be bcrypt hashes produced by
this service (or an equivalent bcrypt producer). The source cannot be made to
prove that, so each value is shape-checked with looks_like_bcrypt_hash() and
rejected as a per-record error when it does not look like a hash. A plaintext
password in the mirror therefore never lands in the users table.

Concurrency: the existence check and the insert are not atomic. When a
concurrent pass (or an admin create) wins the race, the store's unique index
raises DuplicateEmail, which counts as "already present" here.

Per-record failures are collected in the SyncReport; the batch continues.
Running the same records twice creates each identity at most once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.errors import AuthError, DuplicateEmail
from auth.models import NewUser, SyncError, SyncReport
from auth.passwords import looks_like_bcrypt_hash
from auth.store import UserStore
from mirror.models import MirrorRecord

logger = logging.getLogger("keyward.mirror")


def reconcile(store: UserStore, records: Iterable[MirrorRecord]) -> SyncReport:
    """Create store identities for mirror records whose email is unknown.

    Returns a SyncReport; report.created is the number of identities created.
    """
    report = SyncReport()
    for record in records:
        email = (record.email or "").strip()
        if not email or not record.password:
            report.skipped += 1
            continue
        if not looks_like_bcrypt_hash(record.password):
            report.errors.append(SyncError(email=email, error="password is not a bcrypt hash"))
            continue
        try:
            if store.find_by_email(email) is not None:
                report.skipped += 1
                continue
            store.create(
                NewUser(
                    first_name=record.first_name or "",
                    last_name=record.last_name or "",
                    email=email,
                    password=record.password,
                    role=record.role or "user",
                    status=record.status or "active",
                ),
                prehashed=True,
            )
            report.created += 1
        except DuplicateEmail:
            report.skipped += 1
        except (AuthError, ValueError) as e:
            logger.error("Failed to import mirror user %s: %s", email, e)
            report.errors.append(SyncError(email=email, error=str(e)))

    logger.info(
        "Mirror sync completed: %d created, %d skipped, %d errors",
        report.created,
        report.skipped,
        len(report.errors),
    )
    return report
