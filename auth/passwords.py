"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler, has no
compatibility shim, and is actively maintained.

Cost factor: 12 by default (Settings.bcrypt_rounds). The cost is embedded in
every hash, so lowering it later does not weaken existing hashes and
verify_password() needs no configuration.
"""

from __future__ import annotations

import re
from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 12

# $2a$ / $2b$ / $2y$, two-digit cost, 53 chars of bcrypt base64 (salt + digest).
_BCRYPT_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt (a known bcrypt
    limitation). The API layer caps password length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a mismatch, not an error: bcrypt raises
    ValueError for it and the caller only needs a yes/no answer.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def looks_like_bcrypt_hash(value: str) -> bool:
    """Shape check used at the mirror ingestion boundary.

    Does not prove the value was produced by bcrypt, only that storing it
    verbatim cannot put a plaintext password into the users table.
    """
    return bool(_BCRYPT_RE.match(value or ""))


@lru_cache
def dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Timing equalization hash [C1].

    Login runs verify_password() against this when the email is unknown, so
    an unknown email costs the same bcrypt work as a wrong password and
    response time does not reveal which emails exist. Cached per cost factor.
    """
    return hash_password("keyward_timing_dummy", rounds)
