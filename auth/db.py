"""
auth/db.py -- Shared SQLAlchemy plumbing for the credential store and ledger.

UserStore and RefreshTokenLedger live in one database and share one Engine:
the ledger's user_id column references users.id, and both tables hang off the
same MetaData so a single create_all() builds the full schema.

Driver errors never escape the auth layer raw. store_errors() translates:
  IntegrityError on the users.email unique index -> DuplicateEmail
  any other SQLAlchemyError (lock timeout, lost connection, ...) -> StoreUnavailable

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthError, DuplicateEmail, StoreUnavailable

logger = logging.getLogger("keyward.db")

metadata = MetaData()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _ensure_sqlite_dir(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database.

    In-memory databases (":memory:" and "file:...?mode=memory" URIs) are skipped.
    """
    database = make_url(db_url).database or ""
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def create_db_engine(db_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Build the Engine used by both stores.

    For SQLite the driver's busy timeout bounds how long a writer waits for
    the database lock; past it the driver raises OperationalError, which
    store_errors() surfaces as StoreUnavailable instead of hanging.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
        _ensure_sqlite_dir(db_url)
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def store_errors(operation: str, integrity_error: type[AuthError] = DuplicateEmail) -> Iterator[None]:
    """Translate SQLAlchemy exceptions raised inside the block into domain errors.

    integrity_error: the domain error for constraint violations. The users
    table's only unique constraint is email, hence the DuplicateEmail default.
    """
    try:
        yield
    except IntegrityError as exc:
        raise integrity_error() from exc
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc.__class__.__name__)
        raise StoreUnavailable() from exc
