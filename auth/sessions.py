"""
auth/sessions.py -- Session lifecycle: open, login, logout, resolve, flash.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The cookie
       carries the raw token; the store is keyed by HMAC-SHA256(SECRET_KEY,
       token) so a copy of the sessions table cannot be replayed as cookies.

  Login: authenticate() always runs bcrypt, against DUMMY_HASH when the email
       is unknown, so response time does not reveal which emails exist. Both
       failure paths raise the same InvalidCredentials.

  Fixation: login() discards the pre-login session and issues a new token
       bound to the user. A token planted before login is useless after it.

  Logout: only clears the user binding. The session itself survives so the
       "logged out" flash message reaches the next page.

  Writes: anonymous sessions are stored lazily, on the first flash. After
       that, flash/pop_flash write only the data blob and logout writes only
       user_id, so concurrent requests cannot undo each other's binding.

Layer rule: no imports from api/, web/ or blog/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING

from auth.models import Session, User
from auth.passwords import DUMMY_HASH, verify_password
from core.config import get_settings
from core.errors import InvalidCredentials

if TYPE_CHECKING:
    from auth.store import SessionStore, UserStore

logger = logging.getLogger("scribe.auth")

_settings = get_settings()

FLASH_CATEGORIES = ("success", "error")


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def new_token() -> str:
    return secrets.token_urlsafe(32)


def session_key(token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) as a hex string.

    Deterministic, so the store can look the session up by primary key.
    """
    return hmac.new(_settings.secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


def open_session(store: SessionStore, token: str | None) -> Session:
    """Return the live session for the cookie token, or a fresh anonymous one.

    A missing, unknown or expired token gets a new anonymous session that is
    NOT persisted yet (stored=False). flash() writes it on first use, so
    crawlers and one-off requests leave no rows behind.
    """
    if token:
        session = store.get(session_key(token))
        if session is not None:
            session.token = token
            return session
    token = new_token()
    return Session(key=session_key(token), token=token)


def authenticate(user_store: UserStore, email: str, password: str) -> User:
    """Verify an email/password pair. Raises InvalidCredentials on any failure.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash
    """
    user = user_store.get_by_email(email) if email else None
    if user is None or not user.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password or "", DUMMY_HASH)
        logger.info("Login failed: unknown email")
        raise InvalidCredentials()
    if not verify_password(password or "", user.hashed_password):
        logger.info("Login failed for user_id=%s: bad password", user.id)
        raise InvalidCredentials()
    return user


def login(user_store: UserStore, session_store: SessionStore, session: Session, email: str, password: str) -> Session:
    """Authenticate and bind a brand-new session to the user.

    The old session record is destroyed after the credentials check passes,
    so a failed attempt leaves the caller's session untouched. Returns the new
    session; the caller must send its token back as the session cookie.
    """
    user = authenticate(user_store, email, password)
    session_store.destroy(session.key)
    token = new_token()
    fresh = session_store.create(Session(key=session_key(token), token=token, user_id=user.id))
    logger.info("User %s (id=%s) logged in", user.username, user.id)
    return fresh


def logout(session_store: SessionStore, session: Session) -> None:
    """Clear the session-to-user binding. Always succeeds.

    Only user_id is written, and only if the record still exists.
    """
    if session.user_id is not None:
        logger.info("User id=%s logged out", session.user_id)
    session.user_id = None
    if session.stored:
        session_store.unbind(session.key)


def resolve_user(user_store: UserStore, session: Session | None) -> User | None:
    """Map a session to its user. A binding to a deleted user resolves to None."""
    if session is None or session.user_id is None:
        return None
    return user_store.get_by_id(session.user_id)


# ---------------------------------------------------------------------------
# Flash messages
# ---------------------------------------------------------------------------


def _write_data(store: SessionStore, session: Session) -> None:
    """Persist session.data. First write of an anonymous session inserts it.

    A stored session whose record has since been destroyed (user deleted,
    expired) is not revived; the message is dropped.
    """
    if not session.stored:
        store.create(session)
    elif not store.save_data(session.key, session.data):
        logger.debug("Session record gone; dropping flash data")


def flash(store: SessionStore, session: Session, category: str, message: str) -> None:
    """Queue a one-shot message for the next rendered page."""
    if category not in FLASH_CATEGORIES:
        raise ValueError(f"Unknown flash category: {category!r}")
    session.data = {**session.data, category: message}
    _write_data(store, session)


def pop_flash(store: SessionStore, session: Session) -> dict[str, str]:
    """Return and clear queued messages. Missing categories map to ""."""
    messages = {c: session.data.get(c, "") for c in FLASH_CATEGORIES}
    if any(messages.values()):
        session.data = {k: v for k, v in session.data.items() if k not in FLASH_CATEGORIES}
        _write_data(store, session)
    return messages


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the server-side session TTL.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_ttl_seconds,
    )
