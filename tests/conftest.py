"""
tests/conftest.py -- Shared test fixtures for Keyward unit and integration tests.

This module provides:
  - FakeClock: a controllable clock injected into Lockout and RefreshTokenLedger
  - store / ledger / issuer / lockout / service: an in-memory component graph
  - make_user: factory that inserts a user and returns the stored record
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

bcrypt cost 4 (the minimum) keeps the suite fast; the cost is embedded in each
hash so nothing else changes.

The DEBUG env var must be set before any core/api import so get_settings()
auto-generates the signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate JWT secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import _attach, app
from auth.bootstrap import AuthComponents
from auth.ledger import RefreshTokenLedger
from auth.lockout import Lockout
from auth.models import LockoutPolicy, NewUser, User
from auth.service import SessionService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.clock import utcnow
from mirror.store import MirrorFile

TEST_ROUNDS = 4
ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "test-refresh-secret-fedcba9876543210fedcba98765"
PASSWORD = "Correct-Horse1!"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Component fixtures -- single-threaded, plain in-memory SQLite
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(db_url="sqlite:///:memory:", bcrypt_rounds=TEST_ROUNDS)
    yield s
    s.close()


@pytest.fixture
def ledger(store: UserStore, clock: FakeClock) -> RefreshTokenLedger:
    return RefreshTokenLedger(store.engine, clock=clock)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def policy() -> LockoutPolicy:
    return LockoutPolicy(max_attempts=3, lockout_duration=timedelta(minutes=15))


@pytest.fixture
def lockout(store: UserStore, policy: LockoutPolicy, clock: FakeClock) -> Lockout:
    return Lockout(store, policy, clock=clock)


@pytest.fixture
def service(store, lockout, issuer, ledger) -> SessionService:
    return SessionService(store, lockout, issuer, ledger)


@pytest.fixture
def make_user(store: UserStore):
    """Factory: insert a user with PASSWORD and return the stored User."""

    def _make(email: str = "ada@example.com", password: str = PASSWORD, **fields) -> User:
        uid = store.create(
            NewUser(
                first_name=fields.pop("first_name", "Ada"),
                last_name=fields.pop("last_name", "Lovelace"),
                email=email,
                password=password,
                **fields,
            )
        )
        return store.find_by_id(uid)

    return _make


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    components: AuthComponents
    admin: User
    admin_token: str
    user: User
    user_token: str

    def auth(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(components: AuthComponents):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so TestClient routes see
    isolated test DBs and a temp mirror file rather than the real ones.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        _attach(app, components)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with one admin and one regular user already created.

    Each test gets its own named in-memory database and mirror file.
    Rate limiting is disabled; the rate-limit test turns it back on itself.
    """
    db_url = f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    store = UserStore(db_url=db_url, bcrypt_rounds=TEST_ROUNDS)
    ledger = RefreshTokenLedger(store.engine)
    issuer = TokenIssuer(ACCESS_SECRET, REFRESH_SECRET)
    lockout = Lockout(store, LockoutPolicy())
    components = AuthComponents(
        store=store,
        ledger=ledger,
        issuer=issuer,
        lockout=lockout,
        sessions=SessionService(store, lockout, issuer, ledger),
        mirror=MirrorFile(tmp_path / "users.csv"),
    )

    admin_id = store.create(NewUser("Admin", "User", "admin@example.com", PASSWORD, role="admin"))
    user_id = store.create(NewUser("Grace", "Hopper", "grace@example.com", PASSWORD))
    admin = store.find_by_id(admin_id)
    user = store.find_by_id(user_id)

    limiter.enabled = False
    app.router.lifespan_context = _patch_lifespan(components)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            components=components,
            admin=admin,
            admin_token=issuer.issue_access_token(admin.id, admin.email, admin.role),
            user=user,
            user_token=issuer.issue_access_token(user.id, user.email, user.role),
        )

    limiter.enabled = True
    store.close()
