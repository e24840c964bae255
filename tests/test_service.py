"""
tests/test_service.py -- Unit tests for SessionService (auth/service.py).

Covers the login / refresh / logout failure and side-effect table, plus the
lockout scenarios end to end through the service.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from auth.errors import (
    AccountInactive,
    AccountLocked,
    InvalidCredentials,
    InvalidRefreshToken,
    MissingToken,
    StoreUnavailable,
)
from auth.ledger import RefreshTokenLedger
from auth.models import UserUpdate
from auth.service import SessionService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from conftest import ACCESS_SECRET, PASSWORD, REFRESH_SECRET

WRONG = "Wrong-Password1!"


class TestLogin:
    def test_success_returns_tokens_and_redacted_user(self, service: SessionService, make_user) -> None:
        user = make_user()
        result = service.login("ada@example.com", PASSWORD)
        assert result.access_token
        assert result.refresh_token
        assert result.token_type == "bearer"
        assert result.expires_in == 900
        assert result.user.id == user.id
        assert result.user.hashed_password is None

    def test_success_stores_refresh_token(self, service: SessionService, ledger: RefreshTokenLedger, make_user) -> None:
        user = make_user()
        result = service.login("ada@example.com", PASSWORD)
        assert ledger.exists(result.refresh_token, user.id)

    def test_email_is_case_insensitive(self, service: SessionService, make_user) -> None:
        make_user()
        assert service.login("ADA@Example.com", PASSWORD).access_token

    def test_unknown_email(self, service: SessionService, make_user) -> None:
        make_user()
        with pytest.raises(InvalidCredentials) as exc:
            service.login("nobody@example.com", PASSWORD)
        assert exc.value.message == InvalidCredentials.message

    def test_unknown_email_and_wrong_password_look_the_same(self, service: SessionService, make_user) -> None:
        make_user()
        with pytest.raises(InvalidCredentials) as unknown:
            service.login("nobody@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            service.login("ada@example.com", WRONG)
        assert unknown.value.code == wrong.value.code
        assert unknown.value.message == wrong.value.message

    def test_inactive_user(self, service: SessionService, store: UserStore, make_user) -> None:
        user = make_user(status="inactive")
        with pytest.raises(AccountInactive):
            service.login("ada@example.com", PASSWORD)
        assert store.find_by_id(user.id).failed_login_count == 0

    def test_wrong_password_increments_counter(self, service: SessionService, store: UserStore, make_user) -> None:
        user = make_user()
        with pytest.raises(InvalidCredentials):
            service.login("ada@example.com", WRONG)
        assert store.find_by_id(user.id).failed_login_count == 1

    def test_success_resets_partial_failures(self, service: SessionService, store: UserStore, make_user) -> None:
        user = make_user()
        for _ in range(2):
            with pytest.raises(InvalidCredentials):
                service.login("ada@example.com", WRONG)

        service.login("ada@example.com", PASSWORD)
        fresh = store.find_by_id(user.id)
        assert fresh.failed_login_count == 0
        assert fresh.locked_until is None

    def test_ledger_failure_returns_no_tokens(self, store, lockout, issuer, make_user) -> None:
        make_user()
        broken = MagicMock(spec=RefreshTokenLedger)
        broken.store.side_effect = StoreUnavailable()
        svc = SessionService(store, lockout, issuer, broken)
        with pytest.raises(StoreUnavailable):
            svc.login("ada@example.com", PASSWORD)


class TestLockoutScenario:
    """Threshold 3, 15 minute lock."""

    def test_third_failure_locks_and_correct_password_is_refused(
        self, service: SessionService, store: UserStore, make_user
    ) -> None:
        user = make_user()
        counts = []
        for _ in range(3):
            with pytest.raises(InvalidCredentials) as exc:
                service.login("ada@example.com", WRONG)
            counts.append(store.find_by_id(user.id).failed_login_count)
        assert counts == [1, 2, 3]
        assert "locked" in exc.value.message

        with pytest.raises(AccountLocked) as locked:
            service.login("ada@example.com", PASSWORD)
        assert locked.value.locked_until == store.find_by_id(user.id).locked_until

    def test_locked_attempts_do_not_change_counter(
        self, service: SessionService, store: UserStore, make_user, clock
    ) -> None:
        user = make_user()
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                service.login("ada@example.com", WRONG)
        before = store.find_by_id(user.id)

        for password in (WRONG, PASSWORD, WRONG):
            clock.advance(minutes=1)
            with pytest.raises(AccountLocked):
                service.login("ada@example.com", password)
        after = store.find_by_id(user.id)
        assert after.failed_login_count == before.failed_login_count
        assert after.locked_until == before.locked_until

    def test_login_succeeds_after_lock_expires(
        self, service: SessionService, store: UserStore, make_user, clock
    ) -> None:
        user = make_user()
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                service.login("ada@example.com", WRONG)

        clock.advance(minutes=15, seconds=1)
        assert service.login("ada@example.com", PASSWORD).access_token
        fresh = store.find_by_id(user.id)
        assert fresh.failed_login_count == 0
        assert fresh.locked_until is None

    def test_concurrent_lock_is_reported_as_locked(self, service: SessionService, lockout, make_user) -> None:
        user = make_user()
        # Simulate another request locking the row between our read and our write.
        for _ in range(3):
            lockout.register_failure(user)
        service.store = MagicMock(wraps=service.store)
        service.store.find_by_email.return_value = user  # stale, unlocked snapshot
        with pytest.raises(AccountLocked):
            service.login("ada@example.com", WRONG)


class TestRefresh:
    def test_login_then_refresh(self, service: SessionService, issuer: TokenIssuer, make_user) -> None:
        user = make_user()
        login = service.login("ada@example.com", PASSWORD)
        result = service.refresh(login.refresh_token)
        claims = issuer.verify(result.access_token, "access")
        assert claims["user_id"] == user.id
        assert claims["role"] == "user"
        assert result.expires_in == 900

    def test_missing_token(self, service: SessionService) -> None:
        with pytest.raises(MissingToken):
            service.refresh(None)
        with pytest.raises(MissingToken):
            service.refresh("")

    def test_garbage_token(self, service: SessionService) -> None:
        with pytest.raises(InvalidRefreshToken):
            service.refresh("not-a-token")

    def test_access_token_is_not_a_refresh_token(self, service: SessionService, make_user) -> None:
        make_user()
        login = service.login("ada@example.com", PASSWORD)
        with pytest.raises(InvalidRefreshToken):
            service.refresh(login.access_token)

    def test_expired_refresh_token(self, store, lockout, ledger, make_user) -> None:
        user = make_user()
        expired_issuer = TokenIssuer(ACCESS_SECRET, REFRESH_SECRET, refresh_ttl=timedelta(seconds=-5))
        token = expired_issuer.issue_refresh_token(user.id, user.email)
        ledger.store(token, user.id)
        svc = SessionService(store, lockout, expired_issuer, ledger)
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(token)

    def test_validly_signed_but_never_stored(self, service: SessionService, issuer: TokenIssuer, make_user) -> None:
        user = make_user()
        with pytest.raises(InvalidRefreshToken):
            service.refresh(issuer.issue_refresh_token(user.id, user.email))

    def test_ledger_expiry_is_authoritative(self, service: SessionService, make_user, clock) -> None:
        make_user()
        login = service.login("ada@example.com", PASSWORD)
        clock.advance(days=7)
        with pytest.raises(InvalidRefreshToken):
            service.refresh(login.refresh_token)

    def test_deactivated_user_cannot_refresh(self, service: SessionService, store: UserStore, make_user) -> None:
        user = make_user()
        login = service.login("ada@example.com", PASSWORD)
        store.update(user.id, UserUpdate(status="inactive"))
        with pytest.raises(InvalidRefreshToken):
            service.refresh(login.refresh_token)


class TestLogout:
    def test_logout_revokes_refresh_token(self, service: SessionService, make_user) -> None:
        make_user()
        login = service.login("ada@example.com", PASSWORD)
        service.logout(login.refresh_token)
        with pytest.raises(InvalidRefreshToken):
            service.refresh(login.refresh_token)

    def test_logout_is_idempotent(self, service: SessionService, make_user) -> None:
        make_user()
        login = service.login("ada@example.com", PASSWORD)
        service.logout(login.refresh_token)
        service.logout(login.refresh_token)
        service.logout("never-issued")
        service.logout(None)

    def test_logout_leaves_other_sessions(self, service: SessionService, make_user) -> None:
        make_user()
        phone = service.login("ada@example.com", PASSWORD)
        laptop = service.login("ada@example.com", PASSWORD)
        service.logout(phone.refresh_token)
        assert service.refresh(laptop.refresh_token).access_token
