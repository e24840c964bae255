"""
auth/tokens.py -- Access and refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets, so a leaked refresh secret cannot forge access
       tokens and a refresh token never verifies as an access token.

  Access tokens carry sub/user_id, email, and role with a short lifetime
       (default 15 minutes). Refresh tokens carry only sub/user_id and email,
       plus a random jti, with a long lifetime (default 7 days). The jti
       makes two refresh tokens minted in the same second distinct strings,
       so logging out of one device never revokes another.

  Verification distinguishes TokenExpired (valid signature, exp in the past)
       from TokenInvalid (anything else) so callers can choose the right
       user-facing message. Expiry alone never makes a refresh token usable
       again -- the ledger check in auth/service.py still applies.

  Secrets come from core.config.Settings via TokenIssuer.from_settings().
       The issuer holds no other state and needs no locking.

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Literal

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from core.clock import utcnow
from core.config import Settings

_ALGORITHM = "HS256"

TokenKind = Literal["access", "refresh"]


class TokenIssuer:
    """Mints and verifies signed tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue_access_token(user.id, user.email, user.role)
        claims = issuer.verify(token, "access")
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {"access": access_secret, "refresh": refresh_secret}
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        )

    @property
    def access_expires_in(self) -> int:
        """Access-token lifetime in seconds, as reported to clients."""
        return int(self.access_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: int, email: str, role: str) -> str:
        now = utcnow()
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "email": email,
            "role": role,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(payload, self._secrets["access"], algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: int, email: str) -> str:
        now = utcnow()
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "email": email,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + self.refresh_ttl,
        }
        return jwt.encode(payload, self._secrets["refresh"], algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, kind: TokenKind) -> dict:
        """Check signature and expiry with the secret for `kind`; return the claims.

        Raises TokenExpired for a validly signed token past its exp claim and
        TokenInvalid for bad signatures, malformed input, or missing claims.
        """
        secret = self._secrets.get(kind)
        if secret is None:
            raise ValueError(f"Unknown token kind: {kind!r}")
        try:
            claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc
        if not isinstance(claims.get("user_id"), int) or "email" not in claims:
            raise TokenInvalid()
        if kind == "access" and "role" not in claims:
            raise TokenInvalid()
        return claims
