"""
core/clock.py -- UTC time helpers shared by the stores and the lockout logic.

Timestamps are persisted as ISO 8601 strings with a fixed microsecond
precision and an explicit +00:00 offset. A fixed width keeps lexical ordering
identical to chronological ordering, so SQL comparisons such as
``expires_at > :now`` are correct on SQLite (which has no native datetime
type) as well as on PostgreSQL.

Components that need "now" accept a ``clock`` callable defaulting to
``utcnow`` so tests can move time forward without patching globals.

Layer rule: core/ is the kernel. No imports from api/, auth/, or mirror/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize an aware or naive (assumed UTC) datetime for storage."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp. Returns None for empty or malformed values.

    Naive strings (legacy rows, mirror files written by other tools) are
    treated as UTC.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def now_iso() -> str:
    return to_iso(utcnow())
