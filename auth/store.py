"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as blog/store.py).
UserStore and SessionStore are the repositories; _row_to_user /
_row_to_session are the mappers. Route and service code never touches SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Sessions are keyed by HMAC(SECRET_KEY, token), computed in auth/sessions.py.
  A leaked sessions table therefore does not yield usable cookies.

DB path: auth/scribe_auth.db (sibling to blog/scribe_blog.db).

Layer rule: no imports from api/, web/ or blog/.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Role, Session, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'scribe_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default=Role.user.value),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,  # ids are never reused after a delete
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("key", String(64), primary_key=True),  # HMAC-SHA256 hex of the cookie token
    Column("user_id", Integer, index=True),  # NULL while anonymous
    Column("data", Text, nullable=False, server_default="{}"),  # JSON blob (flash messages)
    Column("expires_at", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    """Create an engine and make sure the auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(username="alice", email="a@x.com", hashed_password=hash_password("secret1")))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers treat that as a duplicate, since two registrations can
        race past the find_by_email_or_username() pre-check.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email.lower(),
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email_or_username(self, email: str, username: str) -> User | None:
        """Return any user holding this email or this username."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.email == email.strip().lower(), _users.c.username == username))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, limit: int | None = None) -> list[User]:
        """Return users newest first, optionally capped at limit."""
        query = _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def get_usernames(self, user_ids) -> dict[int, str]:
        """Map user IDs to usernames in one query. Unknown IDs are simply absent."""
        ids = {i for i in user_ids if i is not None}
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.id, _users.c.username).where(_users.c.id.in_(ids))).fetchall()
        return {row.id: row.username for row in rows}

    def update_role(self, user_id: int, role: Role) -> bool:
        """Change a user's role. Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=Role(role).value))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        The store does not cascade. Posts, comments and sessions owned by the
        user are removed by blog/service.delete_user before this is called.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for server-side sessions with a fixed TTL.

    Expiry is passive: get() discards and ignores a record whose expires_at
    has passed. create() and save_data() push expires_at to now + ttl_seconds.

    Writes are narrow. create() is the only INSERT; save_data()
    touches data/expires_at only; unbind() touches user_id only. A request
    still in flight therefore cannot revive a destroyed session or undo a
    logout that happened after it loaded its copy.
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, ttl_seconds: int = 60 * 60 * 24 * 7) -> None:
        self.ttl_seconds = ttl_seconds
        self.engine: Engine = make_engine(db_url)

    def get(self, key: str) -> Session | None:
        """Return the live session for key, or None if absent or expired."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.key == key)).fetchone()
        if row is None:
            return None
        if row.expires_at <= time.time():
            self.destroy(key)
            return None
        return _row_to_session(row)

    def create(self, session: Session) -> Session:
        """Insert a new session record and mark the object as stored."""
        session.expires_at = time.time() + self.ttl_seconds
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    key=session.key,
                    user_id=session.user_id,
                    data=json.dumps(session.data),
                    expires_at=session.expires_at,
                )
            )
            conn.commit()
        session.stored = True
        return session

    def save_data(self, key: str, data: dict) -> bool:
        """Update the data blob and refresh expiry. Never inserts.

        Returns False if the record no longer exists.
        """
        expires_at = time.time() + self.ttl_seconds
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.key == key).values(data=json.dumps(data), expires_at=expires_at)
            )
            conn.commit()
        return result.rowcount > 0

    def unbind(self, key: str) -> None:
        """Clear the user binding of a session, if the record still exists."""
        with self.engine.connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.key == key).values(user_id=None))
            conn.commit()

    def destroy(self, key: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.key == key))
            conn.commit()

    def destroy_for_user(self, user_id: int) -> int:
        """Drop every session bound to user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all expired sessions. Only run on demand (main.py purge-sessions)."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= time.time()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        key=row.key,
        user_id=row.user_id,
        data=json.loads(row.data or "{}"),
        expires_at=row.expires_at,
        stored=True,
    )
