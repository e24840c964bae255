"""
tests/test_lockout.py -- Unit tests for the lockout state machine (auth/lockout.py).

Time is driven by the FakeClock fixture; no test sleeps.
"""

from __future__ import annotations

from auth.lockout import Lockout
from auth.store import UserStore
from core.clock import from_iso


class TestIsLocked:
    def test_fresh_user_is_unlocked(self, lockout: Lockout, make_user) -> None:
        assert lockout.is_locked(make_user()) is False

    def test_locked_until_in_future_is_locked(self, lockout: Lockout, store: UserStore, make_user, clock) -> None:
        user = make_user()
        for _ in range(3):
            lockout.register_failure(user)
        assert lockout.is_locked(store.find_by_id(user.id)) is True

    def test_lock_elapses_without_any_write(self, lockout: Lockout, store: UserStore, make_user, clock) -> None:
        user = make_user()
        for _ in range(3):
            lockout.register_failure(user)
        locked = store.find_by_id(user.id)

        clock.advance(minutes=15)
        assert lockout.is_locked(locked) is False
        # The stored row still carries the stale timestamp; only the comparison changed.
        assert store.find_by_id(user.id).locked_until == locked.locked_until


class TestRegisterFailure:
    def test_counter_increments_then_locks(self, lockout: Lockout, make_user, clock) -> None:
        user = make_user()
        outcomes = [lockout.register_failure(user) for _ in range(3)]
        assert [o.failed_login_count for o in outcomes] == [1, 2, 3]
        assert [o.locked for o in outcomes] == [False, False, True]

    def test_lock_duration_matches_policy(self, lockout: Lockout, policy, make_user, clock) -> None:
        user = make_user()
        for _ in range(3):
            outcome = lockout.register_failure(user)
        assert from_iso(outcome.locked_until) == clock() + policy.lockout_duration

    def test_failure_while_locked_is_refused(self, lockout: Lockout, store: UserStore, make_user, clock) -> None:
        user = make_user()
        for _ in range(3):
            lockout.register_failure(user)
        clock.advance(minutes=5)

        outcome = lockout.register_failure(user)
        assert outcome.applied is False
        assert store.find_by_id(user.id).failed_login_count == 3

    def test_failure_after_expiry_starts_new_count(self, lockout: Lockout, make_user, clock) -> None:
        user = make_user()
        for _ in range(3):
            lockout.register_failure(user)
        clock.advance(minutes=16)

        outcome = lockout.register_failure(user)
        assert outcome.applied is True
        assert outcome.failed_login_count == 1
        assert outcome.locked is False


class TestReset:
    def test_reset_returns_to_unlocked(self, lockout: Lockout, store: UserStore, make_user) -> None:
        user = make_user()
        for _ in range(3):
            lockout.register_failure(user)

        lockout.reset(user)
        fresh = store.find_by_id(user.id)
        assert fresh.failed_login_count == 0
        assert fresh.locked_until is None
        assert lockout.is_locked(fresh) is False
