"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Timestamps are ISO 8601 UTC strings as produced by core.clock.to_iso().

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

ROLES = ("user", "admin")
STATUSES = ("active", "inactive")


@dataclass
class User:
    """A credential-bearing identity.

    email is the natural key: unique across all users, stored lower-cased.
    hashed_password is a bcrypt hash and never leaves the service in clear or
    hashed form -- API responses are built from a redacted copy.

    failed_login_count / locked_until are owned by the lockout state machine
    (auth/lockout.py). locked_until is None when the account has never been
    locked or the last successful login cleared it; a value in the past means
    the lock has elapsed.
    """

    email: str
    first_name: str = ""
    last_name: str = ""
    role: str = "user"  # "user" | "admin"
    status: str = "active"  # "active" | "inactive"
    id: int | None = None
    hashed_password: str | None = None
    failed_login_count: int = 0
    locked_until: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class NewUser:
    """Input for UserStore.create().

    password is plaintext unless the caller passes prehashed=True to create()
    (mirror ingestion only, where the external source supplies bcrypt hashes).
    """

    first_name: str
    last_name: str
    email: str
    password: str
    role: str = "user"
    status: str = "active"


@dataclass
class UserUpdate:
    """Explicit partial update for UserStore.update().

    None means "not supplied": the column is left untouched. None is never a
    legitimate value for any of these columns, so the sentinel is unambiguous.
    Lockout fields are deliberately absent -- they change only through the
    atomic lockout operations on the store.
    """

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    password: str | None = None  # plaintext; hashed by the store
    role: str | None = None
    status: str | None = None

    def supplied(self) -> dict:
        """Return only the fields the caller actually set."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class RefreshTokenRecord:
    """A ledger row. The token text is opaque here; only the issuer parses it.

    Valid while now < expires_at and the row exists. Logout deletes the row.
    """

    token: str
    user_id: int
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class LockoutPolicy:
    """Process-wide lockout configuration, built once from Settings."""

    max_attempts: int = 3
    lockout_duration: timedelta = timedelta(minutes=15)


@dataclass
class FailedLoginOutcome:
    """State after a failed password check.

    applied is False when the row was already locked by a concurrent attempt
    and the transition was refused (no counter change).
    """

    applied: bool
    failed_login_count: int
    locked_until: str | None = None

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


@dataclass
class LoginResult:
    user: User  # redacted: hashed_password is None
    access_token: str
    refresh_token: str
    expires_in: int  # access-token lifetime in seconds
    token_type: str = "bearer"


@dataclass
class RefreshResult:
    access_token: str
    expires_in: int
    token_type: str = "bearer"


@dataclass
class SyncError:
    email: str
    error: str


@dataclass
class SyncReport:
    """Outcome of one mirror reconciliation pass."""

    created: int = 0
    skipped: int = 0
    errors: list[SyncError] = field(default_factory=list)
