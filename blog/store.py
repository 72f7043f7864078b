"""
blog/store.py -- SQLAlchemy-backed persistence layer for posts and comments.

Uses SQLAlchemy Core (not ORM) so the dataclasses in blog/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. BlogStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route handlers
never touch SQL directly.

The store does not cascade anything. Deleting a post here leaves its comments
behind; blog/service.py runs the cascade steps in order.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = BlogStore()                               # SQLite default
    store = BlogStore("postgresql://user:pw@host/db") # PostgreSQL
    post_id = store.create_post(Post(title="Hi", content="1234567890", author_id=1))
    posts = store.list_posts(offset=0, limit=5)
    store.delete_comments(post_ids=[post_id])
    store.close()
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from blog.models import Comment, Post

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'scribe_blog.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_posts = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(200), nullable=False),
    Column("content", Text, nullable=False),
    Column("author_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("text", Text, nullable=False),
    Column("author_id", Integer, nullable=False, index=True),
    Column("post_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class BlogStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: Post) -> int:
        """Insert a new post and return its ID. created_at and updated_at start equal."""
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _posts.insert().values(
                    title=post.title,
                    content=post.content,
                    author_id=post.author_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_post(self, post_id: int) -> Optional[Post]:
        with self.engine.connect() as conn:
            row = conn.execute(_posts.select().where(_posts.c.id == post_id)).fetchone()
        return _row_to_post(row) if row is not None else None

    def list_posts(
        self,
        author_id: Optional[int] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Post]:
        """Return posts newest first, optionally filtered by author and paged.

        id DESC breaks ties between posts created within the same timestamp.
        """
        query = _posts.select().order_by(_posts.c.created_at.desc(), _posts.c.id.desc())
        if author_id is not None:
            query = query.where(_posts.c.author_id == author_id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_post(r) for r in rows]

    def list_post_ids(self, author_id: int) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_posts.c.id).where(_posts.c.author_id == author_id)).fetchall()
        return [row.id for row in rows]

    def count_posts(self, author_id: Optional[int] = None) -> int:
        query = select(func.count()).select_from(_posts)
        if author_id is not None:
            query = query.where(_posts.c.author_id == author_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def update_post(self, post_id: int, **fields) -> bool:
        """Update title and/or content. updated_at is always refreshed.

        Returns True if a row was updated, False if post_id was not found.
        """
        unknown = set(fields) - {"title", "content"}
        if unknown:
            raise ValueError(f"Unknown post fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _posts.update().where(_posts.c.id == post_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_post(self, post_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_posts.delete().where(_posts.c.id == post_id))
            conn.commit()
        return result.rowcount > 0

    def delete_posts(self, author_id: int) -> int:
        """Delete every post by author_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_posts.delete().where(_posts.c.author_id == author_id))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment: Comment) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _comments.insert().values(
                    text=comment.text,
                    author_id=comment.author_id,
                    post_id=comment.post_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_comment(self, comment_id: int) -> Optional[Comment]:
        with self.engine.connect() as conn:
            row = conn.execute(_comments.select().where(_comments.c.id == comment_id)).fetchone()
        return _row_to_comment(row) if row is not None else None

    def list_comments(self, post_id: int) -> list[Comment]:
        """Return a post's comments newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _comments.select()
                .where(_comments.c.post_id == post_id)
                .order_by(_comments.c.created_at.desc(), _comments.c.id.desc())
            ).fetchall()
        return [_row_to_comment(r) for r in rows]

    def count_comments(self, post_id: Optional[int] = None, author_id: Optional[int] = None) -> int:
        query = select(func.count()).select_from(_comments)
        if post_id is not None:
            query = query.where(_comments.c.post_id == post_id)
        if author_id is not None:
            query = query.where(_comments.c.author_id == author_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def delete_comment(self, comment_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_comments.delete().where(_comments.c.id == comment_id))
            conn.commit()
        return result.rowcount > 0

    def delete_comments(self, post_ids: Optional[Iterable[int]] = None, author_id: Optional[int] = None) -> int:
        """Delete comments matching a filter. Returns the number removed.

        post_ids and author_id are alternatives: pass exactly one. An empty
        post_ids list deletes nothing rather than everything.
        """
        if (post_ids is None) == (author_id is None):
            raise ValueError("Pass exactly one of post_ids or author_id")
        if post_ids is not None:
            ids = list(post_ids)
            if not ids:
                return 0
            condition = _comments.c.post_id.in_(ids)
        else:
            condition = _comments.c.author_id == author_id
        with self.engine.connect() as conn:
            result = conn.execute(_comments.delete().where(condition))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        title=row.title,
        content=row.content,
        author_id=row.author_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        text=row.text,
        author_id=row.author_id,
        post_id=row.post_id,
        created_at=row.created_at,
    )
