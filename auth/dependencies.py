"""
auth/dependencies.py -- Request context and authorization gates.

The session middleware in api/main.py loads (or creates) the Session and
parks it on request.state.session. get_request_context() resolves the user
once and hands handlers an immutable RequestContext; nothing downstream reads
ambient request state for identity.

Gates are plain functions over a RequestContext so the blog services can call
them without FastAPI. Order is fixed: authentication first, then role or
ownership.
  require_authenticated() -> Unauthorized if anonymous
  require_admin()         -> Unauthorized, then Forbidden unless admin
  require_owner()         -> Unauthorized, then NotFound, then Forbidden

Layer rule: no imports from web/ or blog/.
  This module may import from fastapi (Request) because get_request_context
  is a FastAPI dependency.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, TypeVar

from fastapi import HTTPException, Request

from auth.models import Role, Session, User
from auth.sessions import resolve_user
from core.errors import Forbidden, NotFound, Unauthorized

T = TypeVar("T")


@dataclass(frozen=True)
class RequestContext:
    """Everything a handler needs to know about who is asking."""

    session: Session
    user: Optional[User] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role is Role.admin


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency: resolve session -> user before any gate runs."""
    session: Session = request.state.session
    user = resolve_user(request.app.state.user_store, session)
    return RequestContext(session=session, user=user)


def get_current_user(request: Request) -> User:
    """JSON-API dependency. Raises HTTP 401 if the request is not authenticated."""
    ctx = get_request_context(request)
    if ctx.user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return ctx.user


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def require_authenticated(ctx: RequestContext, message: str | None = None) -> User:
    if ctx.user is None:
        raise Unauthorized(message)
    return ctx.user


def require_admin(ctx: RequestContext) -> User:
    user = require_authenticated(ctx)
    if user.role is Role.admin:
        return user
    if user.role is Role.user:
        raise Forbidden("Admin access required.")
    raise AssertionError(f"Unhandled role: {user.role!r}")


def require_owner(
    ctx: RequestContext,
    fetch: Callable[[int], Optional[T]],
    resource_id: int,
    label: str = "Post",
    redirect_to: str | None = None,
) -> T:
    """Fetch a resource and check the current user wrote it.

    The resource is returned so the handler does not fetch it a second time.
    Anything with an author_id attribute qualifies (Post, Comment).
    """
    user = require_authenticated(ctx)
    resource = fetch(resource_id)
    if resource is None:
        raise NotFound(f"{label} not found.", redirect_to=redirect_to)
    if resource.author_id != user.id:
        raise Forbidden(f"You are not authorized to modify this {label.lower()}.", redirect_to=redirect_to)
    return resource
