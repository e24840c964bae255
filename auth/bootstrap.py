"""
auth/bootstrap.py -- Startup composition for the API lifespan and the CLI.

build_components() constructs every auth component exactly once from
Settings and wires them together explicitly. Nothing in auth/ reads settings
or module-level singletons after this point.

create_default_admin() is the first-run bootstrap: when the users table is
empty it creates one admin from the DEFAULT_ADMIN_* settings and records it
in the mirror, so a fresh deployment is reachable without direct DB access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import DuplicateEmail
from auth.ledger import RefreshTokenLedger
from auth.lockout import Lockout
from auth.models import LockoutPolicy, NewUser
from auth.service import SessionService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings
from mirror.store import MirrorFile, user_to_record

logger = logging.getLogger("keyward.auth")


@dataclass
class AuthComponents:
    store: UserStore
    ledger: RefreshTokenLedger
    issuer: TokenIssuer
    lockout: Lockout
    sessions: SessionService
    mirror: MirrorFile

    def close(self) -> None:
        self.store.close()


def build_components(settings: Settings) -> AuthComponents:
    """Construct the component graph. Schema creation happens here."""
    store = UserStore(
        settings.database_url,
        bcrypt_rounds=settings.bcrypt_rounds,
        timeout_seconds=settings.db_timeout_seconds,
    )
    ledger = RefreshTokenLedger(store.engine, ttl=settings.refresh_ledger_ttl)
    issuer = TokenIssuer.from_settings(settings)
    lockout = Lockout(
        store,
        LockoutPolicy(
            max_attempts=settings.max_login_attempts,
            lockout_duration=settings.lockout_duration,
        ),
    )
    return AuthComponents(
        store=store,
        ledger=ledger,
        issuer=issuer,
        lockout=lockout,
        sessions=SessionService(store, lockout, issuer, ledger),
        mirror=MirrorFile(settings.mirror_path),
    )


def create_default_admin(store: UserStore, settings: Settings, mirror: MirrorFile | None = None) -> int | None:
    """Create the default admin if no users exist. Returns its id, or None if skipped.

    A concurrent bootstrap that wins the insert race is treated as "already
    bootstrapped".
    """
    if store.has_users():
        return None
    try:
        user_id = store.create(
            NewUser(
                first_name=settings.default_admin_first_name,
                last_name=settings.default_admin_last_name,
                email=settings.default_admin_email,
                password=settings.default_admin_password,
                role="admin",
                status="active",
            )
        )
    except DuplicateEmail:
        return None

    logger.warning(
        "Created default admin %s -- change its password before exposing this service",
        settings.default_admin_email,
    )
    if mirror is not None:
        admin = store.find_by_id(user_id)
        if admin is not None:
            if not mirror.save_record(user_to_record(admin)):
                logger.warning("Default admin was not written to the mirror")
    return user_id
