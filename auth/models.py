"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in blog/models.py -- dataclasses own domain shape; stores and services do the
work.

Layer rule: no imports from api/, web/ or blog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Gates match on every member explicitly."""

    user = "user"
    admin = "admin"


@dataclass
class User:
    """A registered identity.

    email is stored lower-cased so lookups at login are case-insensitive.
    hashed_password is a bcrypt digest; the plaintext is never persisted.
    """

    username: str
    email: str
    role: Role = Role.user
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None  # ISO 8601, set by store on insert


@dataclass
class Session:
    """Server-side session record.

    key is HMAC-SHA256(SECRET_KEY, token). The raw token only ever lives in
    the client cookie and in this object while a request is in flight; the
    store persists the key, never the token.

    user_id is None while the session is anonymous. data holds one-shot flash
    messages keyed by category ("success", "error").

    stored is False for an anonymous session that has not been written yet.
    Nothing is persisted until the first flash message or login.
    """

    key: str
    token: str | None = None
    user_id: int | None = None
    data: dict = field(default_factory=dict)
    expires_at: float = 0.0  # epoch seconds
    stored: bool = False
