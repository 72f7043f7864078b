"""
tests/conftest.py -- Shared test fixtures for Scribe.

This module provides:
  - memory_url(): a unique named shared-memory SQLite URL
  - make_user(): insert a user with a real bcrypt hash
  - login(): drive POST /login through a TestClient
  - stores: fresh (UserStore, SessionStore, BlogStore) per test
  - client: TestClient over the assembled app (asgi.app) wired to those stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Every fixture instance gets its own uuid-named database, so tests never see
each other's users, posts or sessions.

Environment variables must be set before any scribe import: get_settings()
is cached on first call and several modules read it at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import SessionStore, UserStore
from blog.store import BlogStore

PASSWORD = "secret123"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_user(users: UserStore, username: str, role: Role = Role.user, password: str = PASSWORD) -> User:
    """Create <username>@example.com with the given role and return it with its id."""
    user = User(
        username=username,
        email=f"{username}@example.com",
        role=role,
        hashed_password=hash_password(password),
    )
    user.id = users.create_user(user)
    return user


def login(client: TestClient, email: str, password: str = PASSWORD, next_url: str | None = None):
    data = {"email": email, "password": password}
    if next_url is not None:
        data["next"] = next_url
    return client.post("/login", data=data)


def _patch_lifespan(users: UserStore, sessions: SessionStore, blog: BlogStore):
    """Return a lifespan that wires the given stores into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.session_store = sessions
        app.state.blog_store = blog
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[UserStore, SessionStore, BlogStore], None, None]:
    users = UserStore(db_url=memory_url("auth"))
    sessions = SessionStore(db_url=memory_url("sessions"), ttl_seconds=3600)
    blog = BlogStore(db_url=memory_url("blog"))
    yield users, sessions, blog
    blog.close()
    sessions.close()
    users.close()


@pytest.fixture
def client(stores) -> Generator[TestClient, None, None]:
    """TestClient with follow_redirects=False.

    Web tests assert on redirect Location headers, which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    app.router.lifespan_context = _patch_lifespan(*stores)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c
