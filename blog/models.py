"""
blog/models.py -- Domain dataclasses for posts and comments.

These are pure data containers with zero logic. Validation lives in
blog/forms.py, authorization and cascades in blog/service.py.

author_id refers to auth's users table. The two live in different databases,
so nothing but the service layer keeps them consistent.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Post:
    """A blog post. Only its author may edit or delete it (admins may delete).

    id is None before the record is written to the database.
    """

    title: str
    content: str
    author_id: int
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""  # ISO 8601, refreshed by store on every update


@dataclass
class Comment:
    """A comment on a post. Deleted together with its post."""

    text: str
    author_id: int
    post_id: int
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601
