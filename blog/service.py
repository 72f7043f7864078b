"""
blog/service.py -- Handler-level operations for posts, comments and admin.

Every mutation runs the same four phases, in order:
  1. validate the submitted fields (blog/forms.py)
  2. gate (auth/dependencies.py)
  3. persist (BlogStore / UserStore)
  4. cascade, where the entity owns children

Phases 1 and 2 raise before anything is written, so a rejected request never
leaves a partial write behind.

Cascades are NOT transactional. The posts/comments and users live in separate
stores, so run_cascade() executes named steps one after another, logs each
step's count and, on failure, logs what already happened and re-raises. The
order is chosen so an interrupted cascade leaves the parent in place and the
operation can simply be repeated.

Services take a RequestContext and stores as arguments and know nothing about
HTTP. Routes in web/routes.py decide where errors redirect to.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError

from auth.dependencies import RequestContext, require_admin, require_authenticated, require_owner
from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import SessionStore, UserStore
from blog.forms import CommentForm, PostForm, RegisterForm, validate
from blog.models import Comment, Post
from blog.store import BlogStore
from core.errors import NotFound, ValidationError

logger = logging.getLogger("scribe.blog")

DELETED_AUTHOR = "[deleted]"


# ---------------------------------------------------------------------------
# Cascade runner
# ---------------------------------------------------------------------------


def run_cascade(label: str, steps: list[tuple[str, Callable[[], int]]]) -> dict[str, int]:
    """Run ordered delete steps. Returns {step_name: rows_removed}.

    On failure the completed steps are logged and the exception propagates.
    Nothing is rolled back.
    """
    done: dict[str, int] = {}
    for name, step in steps:
        try:
            done[name] = int(step())
        except Exception:
            logger.error("Cascade %s failed at step %r; completed steps: %s", label, name, done)
            raise
        logger.debug("Cascade %s: %s removed %d", label, name, done[name])
    logger.info("Cascade %s complete: %s", label, done)
    return done


def _post_cascade(blog: BlogStore, post_id: int) -> list[tuple[str, Callable[[], int]]]:
    return [
        ("comments", lambda: blog.delete_comments(post_ids=[post_id])),
        ("post", lambda: int(blog.delete_post(post_id))),
    ]


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register(users: UserStore, username: str, email: str, password: str, confirm_password: str) -> User:
    """Create a regular user. Duplicate email or username is a ValidationError."""
    form = validate(
        RegisterForm,
        username=username,
        email=email,
        password=password,
        confirm_password=confirm_password,
    )
    if users.find_by_email_or_username(form.email, form.username) is not None:
        raise ValidationError("Username or email already exists.")

    user = User(
        username=form.username,
        email=form.email,
        role=Role.user,
        hashed_password=hash_password(form.password),
    )
    try:
        user.id = users.create_user(user)
    except IntegrityError as exc:
        # A concurrent registration won the race past the pre-check.
        raise ValidationError("Username or email already exists.") from exc
    logger.info("Registered user %s (id=%s)", user.username, user.id)
    return user


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


def _with_authors(users: UserStore, items: list) -> list[dict]:
    names = users.get_usernames(item.author_id for item in items)
    return [{"item": item, "author": names.get(item.author_id, DELETED_AUTHOR)} for item in items]


def home_feed(users: UserStore, blog: BlogStore, limit: int = 10) -> list[dict]:
    """Latest posts with author names, for the home page."""
    return _with_authors(users, blog.list_posts(limit=limit))


def paginate_posts(users: UserStore, blog: BlogStore, page: int = 1, per_page: int = 5) -> dict:
    """One page of posts, newest first, plus the numbers a pager needs."""
    page = page if page >= 1 else 1
    total = blog.count_posts()
    total_pages = math.ceil(total / per_page) if total else 0
    posts = blog.list_posts(offset=(page - 1) * per_page, limit=per_page)
    return {
        "posts": _with_authors(users, posts),
        "current_page": page,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
        "next_page": page + 1,
        "prev_page": page - 1,
    }


def post_detail(users: UserStore, blog: BlogStore, post_id: int) -> dict:
    post = blog.get_post(post_id)
    if post is None:
        raise NotFound("Post not found.")
    comments = blog.list_comments(post_id)
    names = users.get_usernames([post.author_id, *(c.author_id for c in comments)])
    return {
        "post": post,
        "author": names.get(post.author_id, DELETED_AUTHOR),
        "comments": [{"item": c, "author": names.get(c.author_id, DELETED_AUTHOR)} for c in comments],
    }


def profile(ctx: RequestContext, blog: BlogStore) -> dict:
    user = require_authenticated(ctx)
    return {"user": user, "posts": blog.list_posts(author_id=user.id)}


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


def create_post(ctx: RequestContext, blog: BlogStore, title: str, content: str) -> Post:
    form = validate(PostForm, title=title, content=content)
    user = require_authenticated(ctx)
    post = Post(title=form.title, content=form.content, author_id=user.id)
    post.id = blog.create_post(post)
    logger.info("User id=%s created post id=%s", user.id, post.id)
    return blog.get_post(post.id) or post


def edit_post(ctx: RequestContext, blog: BlogStore, post_id: int, title: str, content: str) -> Post:
    form = validate(PostForm, title=title, content=content)
    post = require_owner(ctx, blog.get_post, post_id, label="Post")
    blog.update_post(post.id, title=form.title, content=form.content)
    logger.info("User id=%s edited post id=%s", ctx.user.id, post.id)
    return blog.get_post(post.id) or post


def delete_post(ctx: RequestContext, blog: BlogStore, post_id: int) -> dict[str, int]:
    post = require_owner(ctx, blog.get_post, post_id, label="Post")
    return run_cascade(f"post:{post.id}", _post_cascade(blog, post.id))


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


def create_comment(ctx: RequestContext, blog: BlogStore, post_id: int, text: str) -> Comment:
    if not post_id:
        raise ValidationError("Comment text and post ID are required.")
    form = validate(CommentForm, text=text)
    user = require_authenticated(ctx, "Please log in to add a comment.")
    if blog.get_post(post_id) is None:
        raise NotFound("Post not found.")
    comment = Comment(text=form.text, author_id=user.id, post_id=post_id)
    comment.id = blog.create_comment(comment)
    return comment


def delete_comment(ctx: RequestContext, blog: BlogStore, comment_id: int) -> Comment:
    """Delete one comment. Missing comment is NotFound, someone else's is Forbidden."""
    comment = require_owner(ctx, blog.get_comment, comment_id, label="Comment")
    blog.delete_comment(comment.id)
    return comment


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


def admin_overview(ctx: RequestContext, users: UserStore, blog: BlogStore) -> dict:
    require_admin(ctx)
    return {
        "users_count": users.count_users(),
        "posts_count": blog.count_posts(),
        "comments_count": blog.count_comments(),
        "latest_posts": _with_authors(users, blog.list_posts(limit=5)),
        "latest_users": users.list_users(limit=5),
    }


def list_users(ctx: RequestContext, users: UserStore) -> list[User]:
    require_admin(ctx)
    return users.list_users()


def admin_list_posts(ctx: RequestContext, users: UserStore, blog: BlogStore) -> list[dict]:
    require_admin(ctx)
    return _with_authors(users, blog.list_posts())


def set_role(ctx: RequestContext, users: UserStore, user_id: int, role: str) -> User:
    """Promote or demote a user. An admin cannot change their own role."""
    try:
        new_role = Role(role)
    except ValueError:
        raise ValidationError("Invalid role value.") from None
    admin = require_admin(ctx)
    if user_id == admin.id:
        raise ValidationError("You cannot change your own role.")
    target = users.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")
    users.update_role(user_id, new_role)
    logger.info("Admin id=%s set role of user id=%s to %s", admin.id, user_id, new_role.value)
    target.role = new_role
    return target


def delete_user(
    ctx: RequestContext,
    users: UserStore,
    sessions: SessionStore,
    blog: BlogStore,
    user_id: int,
) -> dict[str, int]:
    """Delete a user and everything hanging off them.

    Order: comments on the user's posts, the user's own comments, the user's
    posts, the user's sessions, then the user record itself.
    """
    admin = require_admin(ctx)
    if user_id == admin.id:
        raise ValidationError("You cannot delete your own account.")
    target = users.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")

    post_ids = blog.list_post_ids(user_id)
    steps: list[tuple[str, Callable[[], int]]] = [
        ("comments_on_posts", lambda: blog.delete_comments(post_ids=post_ids)),
        ("comments_by_user", lambda: blog.delete_comments(author_id=user_id)),
        ("posts", lambda: blog.delete_posts(user_id)),
        ("sessions", lambda: sessions.destroy_for_user(user_id)),
        ("user", lambda: int(users.delete_user(user_id))),
    ]
    result = run_cascade(f"user:{user_id}", steps)
    logger.info("Admin id=%s deleted user %s (id=%s)", admin.id, target.username, user_id)
    return result


def admin_delete_post(ctx: RequestContext, blog: BlogStore, post_id: int) -> dict[str, int]:
    admin = require_admin(ctx)
    if blog.get_post(post_id) is None:
        raise NotFound("Post not found.")
    result = run_cascade(f"post:{post_id}", _post_cascade(blog, post_id))
    logger.info("Admin id=%s deleted post id=%s", admin.id, post_id)
    return result
