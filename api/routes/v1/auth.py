"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/login    -- email/password login; returns access + refresh tokens
  POST /api/v1/auth/refresh  -- exchange a refresh token for a new access token
  POST /api/v1/auth/logout   -- revoke a refresh token; always 200

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 5 per 15 minutes).
  [C1] SessionService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.

Domain errors (InvalidCredentials, AccountLocked, ...) propagate to the
AuthError handler in api/main.py, which owns the status code mapping.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    UserResponse,
)
from auth.service import SessionService

# Auth policy: all three endpoints are public. Possession of a valid
# refresh token is the credential for /refresh and /logout.
router = APIRouter()


def _no_store(content: dict) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return an access and a refresh token.

    Unknown email and wrong password return the same invalid_credentials
    error. A locked account returns 423 with Retry-After.
    """
    sessions: SessionService = request.app.state.sessions
    result = sessions.login(body.email, body.password)
    return _no_store(
        LoginResponse(
            user=UserResponse.from_user(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
        ).model_dump()
    )


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Mint a new access token. The refresh token itself is not rotated."""
    sessions: SessionService = request.app.state.sessions
    result = sessions.refresh(body.refresh_token if body else None)
    return _no_store(
        RefreshResponse(
            access_token=result.access_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
        ).model_dump()
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[LogoutRequest] = None) -> MessageResponse:
    """Revoke the given refresh token. Succeeds for unknown or missing tokens too."""
    sessions: SessionService = request.app.state.sessions
    sessions.logout(body.refresh_token if body else None)
    return MessageResponse(message="Logged out successfully.")
