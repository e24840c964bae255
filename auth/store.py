"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service, route, and sync code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Plaintext passwords are bcrypt-hashed before they reach an INSERT/UPDATE.
  The only path that stores a password verbatim is create(prehashed=True),
  reserved for the mirror ingestion boundary (see mirror/sync.py).

Concurrency:
  UNIQUE(email) is enforced by the database, so two concurrent create()
  calls for one email resolve to exactly one row; the loser gets
  DuplicateEmail. The failed-login transition is one conditional UPDATE
  (see record_failed_login), never a read followed by a write.

DB path: auth/keyward_auth.db unless a URL is passed in.

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import Column, Integer, String, Table, Text, and_, case, func, or_, select
from sqlalchemy.engine import Engine

from auth.db import create_db_engine, metadata, store_errors
from auth.errors import NotFound
from auth.models import ROLES, STATUSES, FailedLoginOutcome, NewUser, User, UserUpdate
from auth.passwords import DEFAULT_ROUNDS, hash_password
from core.clock import now_iso, to_iso

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'keyward_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("failed_login_count", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),  # NULL = not locked
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    """Emails are compared and stored case-insensitively."""
    return (email or "").strip().lower()


def _check_enums(role: str | None, status: str | None) -> None:
    if role is not None and role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    if status is not None and status not in STATUSES:
        raise ValueError(f"Unknown status: {status!r}")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        uid = store.create(NewUser("Ada", "Lovelace", "ada@example.com", "S3cret!pass"))
        user = store.find_by_email("ADA@example.com")
        store.update(uid, UserUpdate(role="admin"))
        store.close()

    The engine is exposed as store.engine so RefreshTokenLedger can share it.
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.bcrypt_rounds = bcrypt_rounds
        self.engine: Engine = create_db_engine(db_url, timeout_seconds)
        with store_errors("create_schema"):
            metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with store_errors("find_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with store_errors("find_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_all(self) -> list[User]:
        """Return all users, newest-created first."""
        with store_errors("list_all"), self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def has_users(self) -> bool:
        """Return True if at least one user record exists. Used by first-run bootstrap."""
        with store_errors("has_users"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def count_active_admins(self) -> int:
        """Return the number of active admin users.

        Used by PATCH /users/{id} to prevent deactivating the last admin [M4].
        """
        with store_errors("count_active_admins"), self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == "admin") & (_users.c.status == "active"))
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint. Never raises."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, new_user: NewUser, *, prehashed: bool = False) -> int:
        """Insert a new user and return its assigned database ID.

        The password is bcrypt-hashed unless prehashed=True. prehashed is a
        trust boundary: the caller guarantees the value is already a hash
        (mirror/sync.py checks the hash shape before passing it here).

        Raises DuplicateEmail if the email already exists -- including the
        race where a concurrent create() inserted it first.
        Raises ValueError for an unknown role or status.
        """
        _check_enums(new_user.role, new_user.status)
        email = normalize_email(new_user.email)
        if not email:
            raise ValueError("email is required")
        hashed = new_user.password if prehashed else hash_password(new_user.password, self.bcrypt_rounds)
        now = now_iso()
        with store_errors("create"), self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    first_name=new_user.first_name or "",
                    last_name=new_user.last_name or "",
                    email=email,
                    hashed_password=hashed,
                    role=new_user.role or "user",
                    status=new_user.status or "active",
                    failed_login_count=0,
                    locked_until=None,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def update(self, user_id: int, changes: UserUpdate) -> bool:
        """Apply a partial update in one parameterized statement.

        Only fields set on `changes` are written; updated_at is always
        refreshed. A supplied password is hashed first. An email that collides
        with another user raises DuplicateEmail.

        Returns True if a row was updated, False if user_id was not found.
        """
        values = changes.supplied()
        _check_enums(values.get("role"), values.get("status"))
        if "email" in values:
            values["email"] = normalize_email(values["email"])
        if "password" in values:
            values["hashed_password"] = hash_password(values.pop("password"), self.bcrypt_rounds)
        values["updated_at"] = now_iso()
        with store_errors("update"), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lockout transitions (driven by auth/lockout.py)
    # ------------------------------------------------------------------

    def record_failed_login(
        self,
        user_id: int,
        *,
        max_attempts: int,
        lock_until: datetime,
        now: datetime,
    ) -> FailedLoginOutcome:
        """Atomically count one failed attempt and lock on reaching max_attempts.

        A single UPDATE computes the new counter and lock from the row's
        current values, so concurrent failures against one user cannot lose
        increments. The WHERE clause refuses the transition while the row is
        locked (applied=False, nothing changes). If a previous lock has
        already elapsed, counting restarts at 1.

        The resulting state is read back inside the same transaction.
        Raises NotFound if the user no longer exists.
        """
        now_s = to_iso(now)
        lock_elapsed = and_(_users.c.locked_until.is_not(None), _users.c.locked_until <= now_s)
        new_count = case((lock_elapsed, 1), else_=_users.c.failed_login_count + 1)
        stmt = (
            _users.update()
            .where(_users.c.id == user_id)
            .where(or_(_users.c.locked_until.is_(None), _users.c.locked_until <= now_s))
            .values(
                failed_login_count=new_count,
                locked_until=case((new_count >= max_attempts, to_iso(lock_until)), else_=None),
                updated_at=now_s,
            )
        )
        with store_errors("record_failed_login"), self.engine.begin() as conn:
            applied = conn.execute(stmt).rowcount > 0
            row = conn.execute(
                select(_users.c.failed_login_count, _users.c.locked_until).where(_users.c.id == user_id)
            ).fetchone()
        if row is None:
            raise NotFound()
        return FailedLoginOutcome(
            applied=applied,
            failed_login_count=row.failed_login_count,
            locked_until=row.locked_until,
        )

    def reset_failed_logins(self, user_id: int) -> bool:
        """Clear the counter and any lock. Touches the row only if there is something to clear.

        Returns True if the row changed.
        """
        with store_errors("reset_failed_logins"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .where(or_(_users.c.failed_login_count != 0, _users.c.locked_until.is_not(None)))
                .values(failed_login_count=0, locked_until=None, updated_at=now_iso())
            )
            return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        status=row.status,
        failed_login_count=row.failed_login_count or 0,
        locked_until=row.locked_until,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
