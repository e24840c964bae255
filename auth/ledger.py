"""
auth/ledger.py -- Server-side record of issued refresh tokens.

A signed refresh token stays cryptographically valid until its exp claim, so
signature checks alone cannot revoke it. The ledger is what makes logout
effective immediately: refresh is honoured only while a matching row exists
with expires_at strictly in the future.

The ledger expiry is set independently of the token's own exp claim and is
the authority for revocation purposes.

Pattern: Repository + Data Mapper (same as auth/store.py), sharing the
UserStore's Engine and MetaData.

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import Column, Integer, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.db import metadata, store_errors
from auth.errors import StoreUnavailable
from auth.models import RefreshTokenRecord
from core.clock import Clock, to_iso, utcnow

logger = logging.getLogger("keyward.ledger")

DEFAULT_TTL = timedelta(days=7)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False, index=True),
    Column("user_id", Integer, nullable=False, index=True),  # references users.id
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RefreshTokenLedger:
    """Repository for RefreshTokenRecord rows.

    Usage:
        ledger = RefreshTokenLedger(user_store.engine)
        ledger.store(refresh_token, user.id)
        ledger.exists(refresh_token, user.id)   # True until expiry or removal
        ledger.remove(refresh_token)
    """

    def __init__(self, engine: Engine, ttl: timedelta = DEFAULT_TTL, clock: Clock = utcnow) -> None:
        self.engine = engine
        self.ttl = ttl
        self.clock = clock
        with store_errors("create_schema", StoreUnavailable):
            metadata.create_all(self.engine)

    def store(self, token: str, user_id: int) -> int:
        """Persist a freshly issued refresh token; return the ledger row id."""
        now = self.clock()
        with store_errors("store_refresh_token", StoreUnavailable), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=token,
                    user_id=user_id,
                    expires_at=to_iso(now + self.ttl),
                    created_at=to_iso(now),
                )
            )
            return result.inserted_primary_key[0]

    def exists(self, token: str, user_id: int) -> bool:
        """True only for a matching row whose expiry is strictly in the future."""
        with store_errors("check_refresh_token", StoreUnavailable), self.engine.connect() as conn:
            row = conn.execute(
                select(_refresh_tokens.c.id)
                .where(_refresh_tokens.c.token == token)
                .where(_refresh_tokens.c.user_id == user_id)
                .where(_refresh_tokens.c.expires_at > to_iso(self.clock()))
                .limit(1)
            ).fetchone()
        return row is not None

    def remove(self, token: str) -> bool:
        """Delete a token (logout / revocation). Returns True if a row was deleted."""
        with store_errors("remove_refresh_token", StoreUnavailable), self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            removed = result.rowcount > 0
        if removed:
            logger.info("Refresh token revoked")
        return removed

    def list_for_user(self, user_id: int) -> list[RefreshTokenRecord]:
        """Return a user's unexpired sessions, newest first."""
        with store_errors("list_refresh_tokens", StoreUnavailable), self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .where(_refresh_tokens.c.expires_at > to_iso(self.clock()))
                .order_by(_refresh_tokens.c.created_at.desc(), _refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def purge_expired(self) -> int:
        """Delete rows whose expiry has passed. Returns the number deleted.

        Expired rows are already ignored by exists(); purging only keeps the
        table small. Called periodically by the API and by `main.py purge-tokens`.
        """
        with store_errors("purge_refresh_tokens", StoreUnavailable), self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= to_iso(self.clock())))
            purged = result.rowcount
        if purged:
            logger.info("Purged %d expired refresh tokens", purged)
        return purged


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
