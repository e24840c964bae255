"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

Requests authenticate with an access token in the Authorization header:
    Authorization: Bearer <access token>

The token is verified with the access secret, then the user is re-fetched
from the store so a deactivated account loses access immediately instead of
at token expiry.

get_current_user() raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.
require_admin_or_self() allows an admin, or the user named by the user_id
path parameter.

Layer rule: no imports from api/ or mirror/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import TokenError, TokenExpired
from auth.models import User
from auth.store import UserStore
from auth.tokens import TokenIssuer


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise _unauthorized("unauthorized", "Access token required.")

    issuer: TokenIssuer = request.app.state.issuer
    try:
        claims = issuer.verify(token, "access")
    except TokenExpired as exc:
        raise _unauthorized(exc.code, exc.message) from exc
    except TokenError as exc:
        raise _unauthorized("invalid_token", "Invalid token.") from exc

    store: UserStore = request.app.state.store
    user = store.find_by_id(claims["user_id"])
    if user is None or user.status != "active":
        raise _unauthorized("invalid_token", "Invalid token.")
    return user


def require_admin(request: Request) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user


def require_admin_or_self(request: Request, user_id: int) -> User:
    """Allow admins, or the user whose id is in the path. HTTP 403 otherwise."""
    user = get_current_user(request)
    if user.role != "admin" and user.id != user_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only access your own account."},
        )
    return user
