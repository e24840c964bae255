"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  GET   /api/v1/users/me       -- current user (requires auth)
  GET   /api/v1/users          -- list all users (admin only)
  GET   /api/v1/users/{id}     -- one user (admin, or the user themselves)
  POST  /api/v1/users          -- create user (admin only)
  PATCH /api/v1/users/{id}     -- update user (admin, or the user themselves)
  POST  /api/v1/users/sync     -- import new users from the mirror file (admin only)

Security:
  [M4] PATCH /users/{id} blocks self-deactivation and removing the last active admin.
  Non-admins may edit their own names, email, and password, never role or status.

Mirror write-back: create and update are reflected in the mirror file after
the store write commits. The mirror is best-effort; a failed write is logged
by MirrorFile and does not fail the request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import SyncErrorRow, SyncResponse, UserCreate, UserPatch, UserResponse
from auth.dependencies import get_current_user, require_admin, require_admin_or_self
from auth.errors import NotFound
from auth.models import NewUser, User, UserUpdate
from auth.store import UserStore
from mirror.store import MirrorFile, user_to_record
from mirror.sync import reconcile

# Auth policy:
# - GET   /api/v1/users/me:     requires auth (get_current_user)
# - GET   /api/v1/users:        requires admin (require_admin)
# - GET   /api/v1/users/{id}:   requires admin or self (require_admin_or_self)
# - POST  /api/v1/users:        requires admin (require_admin)
# - PATCH /api/v1/users/{id}:   requires admin or self; role/status admin only
# - POST  /api/v1/users/sync:   requires admin (require_admin)
router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_user(current_user)


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    """List all user accounts, newest first. Admin only."""
    store: UserStore = request.app.state.store
    return [UserResponse.from_user(u) for u in store.list_all()]


@router.post("/users/sync", response_model=SyncResponse)
def sync_users(request: Request, current_user: User = Depends(require_admin)) -> SyncResponse:
    """Create store users for mirror rows whose email is not known yet. Admin only.

    Existing users are never modified. Re-running is safe.
    """
    store: UserStore = request.app.state.store
    mirror: MirrorFile = request.app.state.mirror
    report = reconcile(store, mirror.read_records())
    return SyncResponse(
        created=report.created,
        skipped=report.skipped,
        errors=[SyncErrorRow(email=e.email, error=e.error) for e in report.errors],
    )


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin_or_self),
) -> UserResponse:
    store: UserStore = request.app.state.store
    user = store.find_by_id(user_id)
    if user is None:
        raise NotFound()
    return UserResponse.from_user(user)


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a user account. Admin only.

    A taken email returns 409 duplicate_email, including when a concurrent
    request created it first.
    """
    store: UserStore = request.app.state.store
    mirror: MirrorFile = request.app.state.mirror

    user_id = store.create(
        NewUser(
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
            password=body.password,
            role=body.role.value,
            status=body.status.value,
        )
    )
    created = _fetch(store, user_id)
    mirror.save_record(user_to_record(created))
    return UserResponse.from_user(created)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_admin_or_self),
) -> UserResponse:
    """Partially update a user.

    [M4] Prevents:
      - Self-deactivation (admin accidentally locking themselves out).
      - Deactivating or demoting the last active admin (no recovery path
        without DB access).
    """
    store: UserStore = request.app.state.store
    mirror: MirrorFile = request.app.state.mirror

    target = store.find_by_id(user_id)
    if target is None:
        raise NotFound()

    if current_user.role != "admin" and (body.role is not None or body.status is not None):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only admins can change role or status."},
        )

    changes = UserUpdate(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=body.password,
        role=body.role.value if body.role is not None else None,
        status=body.status.value if body.status is not None else None,
    )
    if not changes.supplied():
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    # [M4] Block self-deactivation
    if changes.status == "inactive" and target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    # [M4] Block removing the last active admin
    loses_admin = changes.status == "inactive" or (changes.role is not None and changes.role != "admin")
    if loses_admin and target.role == "admin" and target.status == "active":
        if store.count_active_admins() <= 1:
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
            )

    if not store.update(user_id, changes):
        raise NotFound()

    updated = _fetch(store, user_id)
    record = user_to_record(updated)
    mirror.update_record(
        target.email,
        first_name=record.first_name,
        last_name=record.last_name,
        email=record.email,
        password=record.password,
        role=record.role,
        status=record.status,
    )
    return UserResponse.from_user(updated)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fetch(store: UserStore, user_id: int) -> User:
    user = store.find_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return user
