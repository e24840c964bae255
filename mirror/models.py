"""
mirror/models.py -- Domain dataclass for the bulk user mirror.

The mirror is a flat, denormalized copy of the users table kept in a file
for bulk import/export. MirrorRecord is its row shape. It is deliberately
separate from auth.models.User: the mirror has no ids, no lockout state, and
its password column must already hold a bcrypt hash.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class MirrorRecord:
    """One user row from (or for) the mirror file.

    role / status are None when the source left them blank; reconcile()
    applies the "user" / "active" defaults.
    """

    email: str
    password: str  # bcrypt hash -- never plaintext
    first_name: str = ""
    last_name: str = ""
    role: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = None  # ISO 8601
    updated_at: Optional[str] = None  # ISO 8601
