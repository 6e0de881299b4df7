"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; these own the domain shape.

Times are integer nanoseconds since the Unix epoch, matching the on-disk
representation of the deadline columns.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

NS_PER_SECOND = 1_000_000_000


class Permission(IntEnum):
    """Ordered account tiers. Comparisons use the integer order."""

    GUEST = 0
    NORMAL = 1
    TRUSTED = 2
    ADMIN = 3
    OWNER = 4


@dataclass
class Session:
    """One authenticated device/user pairing.

    id is the stable database identity used for per-session operations
    (delete-by-id); auth_token is the bearer secret. The two are generated
    independently.

    auth_token must never be logged. The repr hides it so an accidental
    logger.info("%r", session) cannot leak it.
    """

    id: int
    username: str
    auth_token: str
    deadline: int  # ns epoch; renewed on every successful lookup
    user_agent: str = ""  # captured once at creation, display only

    def expired(self, now: int) -> bool:
        return now > self.deadline

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, username={self.username!r}, deadline={self.deadline!r})"


@dataclass
class User:
    """A local account. passhash is a bcrypt hash and is never serialized."""

    username: str
    passhash: str
    permission: Permission = Permission.NORMAL
    created_at: int = 0  # ns epoch, set by the store on insert


@dataclass
class InviteToken:
    """A limited-use credential required for signup.

    remaining counts the signups the token still allows; the row is deleted
    when it reaches zero. deadline 0 means the token never expires.
    """

    token: str
    creator: str
    remaining: int = 1
    deadline: int = 0
