"""
auth/lockout.py -- Brute-force lockout state machine.

States per user, derived from the stored row on every call:
  Unlocked  locked_until is NULL or not in the future
  Locked    locked_until is in the future

Transitions:
  Unlocked --failure, count below max--> Unlocked (count + 1)
  Unlocked --failure reaching max------> Locked (locked_until = now + duration)
  Locked   --any attempt---------------> Locked (rejected, no counter change)
  Locked   --locked_until elapses------> Unlocked (implicit; nothing runs)
  *        --correct password----------> Unlocked (count 0, locked_until NULL)

Nothing here is cached between requests. The caller passes a freshly read
User, and the write side lives in single atomic statements on UserStore.

Layer rule: no imports from api/ or mirror/.
"""

from __future__ import annotations

import logging

from auth.models import FailedLoginOutcome, LockoutPolicy, User
from auth.store import UserStore
from core.clock import Clock, from_iso, utcnow

logger = logging.getLogger("keyward.auth")


class Lockout:
    def __init__(self, store: UserStore, policy: LockoutPolicy, clock: Clock = utcnow) -> None:
        self.store = store
        self.policy = policy
        self.clock = clock

    def is_locked(self, user: User) -> bool:
        """Pure check of locked_until against the current time."""
        locked_until = from_iso(user.locked_until)
        return locked_until is not None and self.clock() < locked_until

    def register_failure(self, user: User) -> FailedLoginOutcome:
        """Count one failed password check for `user`, locking at the threshold."""
        now = self.clock()
        outcome = self.store.record_failed_login(
            user.id,
            max_attempts=self.policy.max_attempts,
            lock_until=now + self.policy.lockout_duration,
            now=now,
        )
        if outcome.applied and outcome.locked:
            logger.warning(
                "User %d locked until %s after %d failed attempts",
                user.id,
                outcome.locked_until,
                outcome.failed_login_count,
            )
        return outcome

    def reset(self, user: User) -> None:
        """Successful authentication: back to Unlocked with a zero counter."""
        if self.store.reset_failed_logins(user.id):
            logger.info("Cleared failed-login state for user %d", user.id)
