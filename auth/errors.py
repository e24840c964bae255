"""
auth/errors.py -- Domain error taxonomy.

Every error the core raises on purpose is an AuthError subclass with a stable
machine-readable code. The core never maps errors to HTTP statuses; the
exception handler in api/main.py does that from the class.

Messages are safe to show to end users. InvalidCredentials deliberately uses
one message for "unknown email" and "wrong password" so responses do not
reveal which emails exist. AccountLocked is intentionally distinguishable.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid credentials."


class AccountInactive(AuthError):
    code = "account_inactive"
    message = "Account is inactive."


class AccountLocked(AuthError):
    code = "account_locked"
    message = "Account is temporarily locked due to too many failed login attempts."

    def __init__(self, message: str | None = None, locked_until: str | None = None) -> None:
        super().__init__(message)
        self.locked_until = locked_until


class MissingToken(AuthError):
    code = "missing_token"
    message = "Refresh token is required."


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh_token"
    message = "Invalid refresh token."


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    message = "A user with this email already exists."


class NotFound(AuthError):
    code = "not_found"
    message = "User not found."


class StoreUnavailable(AuthError):
    """Wraps a persistence-layer failure (lock timeout, lost connection, ...).

    Never retried inside the core: login and refresh have side effects that
    must not be duplicated.
    """

    code = "store_unavailable"
    message = "The credential store is unavailable."


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "token_error"
    message = "Invalid token."


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Token has expired. Please login again."


class TokenInvalid(TokenError):
    code = "token_invalid"
    message = "Invalid token."
