"""
auth/service.py -- Login, refresh, and logout orchestration.

SessionService is the only entry point external callers use for sessions.
It composes the four lower components, all injected at construction:

  login:   store lookup -> lockout check -> bcrypt -> lockout update
           -> issue access + refresh -> ledger write
  refresh: verify signature/expiry -> ledger lookup -> store re-fetch
           -> issue access
  logout:  ledger delete (idempotent)

Failure table:
  login    unknown email      InvalidCredentials   no side effect
  login    inactive           AccountInactive      no side effect
  login    locked             AccountLocked        no side effect
  login    wrong password     InvalidCredentials   counter +1, may lock
  login    success            LoginResult          counter reset, ledger row
  refresh  bad/expired token  InvalidRefreshToken  none
  refresh  not in ledger      InvalidRefreshToken  none
  refresh  success            RefreshResult        none
  logout   any                None                 ledger row deleted if present

Refresh tokens are not rotated: refresh() mints a new access token only.

Security:
  [C1] Unknown emails still run one bcrypt check (against a dummy hash) so
       response time does not reveal which emails exist.
  refresh() does not distinguish "never issued" from "revoked" from
       "expired in the ledger" -- all are InvalidRefreshToken.

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

import dataclasses
import logging

from auth.errors import (
    AccountInactive,
    AccountLocked,
    InvalidCredentials,
    InvalidRefreshToken,
    MissingToken,
    TokenError,
)
from auth.ledger import RefreshTokenLedger
from auth.lockout import Lockout
from auth.models import LoginResult, RefreshResult, User
from auth.passwords import dummy_hash, verify_password
from auth.store import UserStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("keyward.auth")

_LOCKED_NOW_MESSAGE = "Too many failed attempts. Account has been temporarily locked."


def redact(user: User) -> User:
    """Copy of `user` without the password hash, safe to hand to callers."""
    return dataclasses.replace(user, hashed_password=None)


class SessionService:
    def __init__(
        self,
        store: UserStore,
        lockout: Lockout,
        issuer: TokenIssuer,
        ledger: RefreshTokenLedger,
    ) -> None:
        self.store = store
        self.lockout = lockout
        self.issuer = issuer
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        """Verify credentials and open a session.

        Tokens are returned only after the ledger write committed; a
        StoreUnavailable at any step aborts the whole login.
        """
        user = self.store.find_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password, dummy_hash(self.store.bcrypt_rounds))
            logger.info("Login failed: unknown email")
            raise InvalidCredentials()

        if user.status != "active":
            logger.info("Login refused for inactive user %d", user.id)
            raise AccountInactive()

        if self.lockout.is_locked(user):
            logger.info("Login refused for locked user %d", user.id)
            raise AccountLocked(locked_until=user.locked_until)

        if not verify_password(password, user.hashed_password or ""):
            outcome = self.lockout.register_failure(user)
            if not outcome.applied:
                # A concurrent attempt locked the row after we read it.
                raise AccountLocked(locked_until=outcome.locked_until)
            logger.info("Login failed for user %d (attempt %d)", user.id, outcome.failed_login_count)
            if outcome.locked:
                raise InvalidCredentials(_LOCKED_NOW_MESSAGE)
            raise InvalidCredentials()

        self.lockout.reset(user)

        access_token = self.issuer.issue_access_token(user.id, user.email, user.role)
        refresh_token = self.issuer.issue_refresh_token(user.id, user.email)
        self.ledger.store(refresh_token, user.id)

        logger.info("User %d logged in", user.id)
        fresh = self.store.find_by_id(user.id) or user
        return LoginResult(
            user=redact(fresh),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.issuer.access_expires_in,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None) -> RefreshResult:
        """Exchange a live refresh token for a new access token."""
        if not refresh_token:
            raise MissingToken()

        try:
            claims = self.issuer.verify(refresh_token, "refresh")
        except TokenError as exc:
            raise InvalidRefreshToken() from exc

        user_id = claims["user_id"]
        if not self.ledger.exists(refresh_token, user_id):
            raise InvalidRefreshToken()

        user = self.store.find_by_id(user_id)
        if user is None or user.status != "active":
            raise InvalidRefreshToken()

        return RefreshResult(
            access_token=self.issuer.issue_access_token(user.id, user.email, user.role),
            expires_in=self.issuer.access_expires_in,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str | None) -> None:
        """Revoke a refresh token. Succeeds whether or not the token was known."""
        if refresh_token:
            self.ledger.remove(refresh_token)
