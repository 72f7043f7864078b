"""
auth/passwords.py -- Credential verifier (bcrypt hashing and verification).

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.

Passwords longer than 72 bytes are truncated by bcrypt. The registration
form caps passwords well below that (blog/forms.py).

Layer rule: no imports from api/, web/ or blog/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_settings = get_settings()


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or empty hash is a failed verification, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than later ones. authenticate() verifies against it when the email
# is unknown, so both failure paths cost one bcrypt check.
DUMMY_HASH: str = hash_password("scribe_timing_dummy")
