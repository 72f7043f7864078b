"""
web/routes.py -- Jinja2 template routes for the Scribe web UI.

Every handler receives an explicit RequestContext (session + resolved user)
through Depends(get_request_context) and delegates the real work to
blog/service.py. Services raise ScribeError subclasses; api/main.py flashes
the message and redirects. Routes only decide WHERE a failure goes, using
_redirect_errors() around the service call.

Route registration order matters. GET /posts/new must be registered before
GET /posts/{post_id} or FastAPI captures "new" as a path parameter.

Routes:
  GET  /                              -- ten latest posts
  GET  /register, POST /register      -- sign-up (anonymous only)
  GET  /login, POST /login            -- password login (anonymous only, rate limited)
  POST /logout                        -- clear the session binding
  GET  /profile                       -- own posts (auth required)
  GET  /posts                         -- paginated list
  GET  /posts/new, POST /posts        -- create (auth required)
  GET  /posts/{post_id}               -- post with comments
  GET  /posts/{post_id}/edit          -- edit form (owner)
  POST /posts/{post_id}               -- update (owner)
  POST /posts/{post_id}/delete        -- delete + comment cascade (owner)
  POST /comments                      -- add comment (auth required)
  POST /comments/{comment_id}/delete  -- delete comment (owner)
  GET  /admin                         -- dashboard (admin)
  GET  /admin/users                   -- user list (admin)
  POST /admin/users/{user_id}/role    -- promote / demote (admin)
  POST /admin/users/{user_id}/delete  -- delete user + cascade (admin)
  GET  /admin/posts                   -- post list (admin)
  POST /admin/posts/{post_id}/delete  -- delete any post + cascade (admin)
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from urllib.parse import quote
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter
from auth import sessions
from auth.dependencies import RequestContext, get_request_context, require_authenticated, require_owner
from auth.sessions import resolve_user
from blog import service
from core.config import get_settings
from core.errors import Forbidden, InvalidCredentials, NotFound, ScribeError, ValidationError

logger = logging.getLogger("scribe.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_EXCERPT_LEN = 150


# ---------------------------------------------------------------------------
# Template filters
# ---------------------------------------------------------------------------


def _excerpt(content: str, length: int = _EXCERPT_LEN) -> str:
    """First 150 characters of a post, with an ellipsis if cut."""
    return content[:length] + "..." if len(content) > length else content


def _format_date(iso: Optional[str]) -> str:
    """'2026-10-19T15:04:00+00:00' -> 'October 19, 2026, 03:04 PM'."""
    if not iso:
        return ""
    try:
        return datetime.fromisoformat(iso).strftime("%B %d, %Y, %I:%M %p")
    except ValueError:
        return iso


templates.env.filters["excerpt"] = _excerpt
templates.env.filters["datefmt"] = _format_date


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs (https://attacker.com) and protocol-relative URLs
    (//attacker.com), both of which would send the user off-site.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


@contextmanager
def _redirect_errors(target: str, *kinds: type[ScribeError]) -> Iterator[None]:
    """Send the listed error kinds (default: ValidationError) back to target.

    Errors that already carry a redirect, and kinds not listed, keep the
    default targets chosen in api/main.py (e.g. Unauthorized -> /login).
    """
    kinds = kinds or (ValidationError,)
    try:
        yield
    except kinds as exc:
        if exc.redirect_to is None:
            exc.redirect_to = target
        raise


def _render(request: Request, ctx: RequestContext, name: str, context: dict, status_code: int = 200) -> HTMLResponse:
    """Render a page with the current user and any pending flash messages."""
    messages = sessions.pop_flash(request.app.state.session_store, ctx.session)
    return templates.TemplateResponse(
        request,
        name,
        {"current_user": ctx.user, **messages, **context},
        status_code=status_code,
    )


def _redirect(request: Request, ctx: RequestContext, url: str, success: Optional[str] = None) -> RedirectResponse:
    if success:
        sessions.flash(request.app.state.session_store, ctx.session, "success", success)
    return RedirectResponse(url, status_code=302)


def _parse_page(raw: Optional[str]) -> int:
    try:
        page = int(raw or 1)
    except ValueError:
        logger.debug("Ignoring non-numeric page %r", raw)
        return 1
    return page if page >= 1 else 1


def error_page(request: Request, status_code: int, message: str) -> HTMLResponse:
    """Render error.html. Installed as app.state.error_page by asgi.py."""
    session = getattr(request.state, "session", None)
    user = None
    if session is not None:
        user = resolve_user(request.app.state.user_store, session)
    title = "404 - Page Not Found" if status_code == 404 else "Error"
    return templates.TemplateResponse(
        request,
        "error.html",
        {"current_user": user, "success": "", "error": "", "message": message, "title": title},
        status_code=status_code,
    )


# ---------------------------------------------------------------------------
# GET / -- home page
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    posts = service.home_feed(request.app.state.user_store, request.app.state.blog_store, _settings.home_post_limit)
    return _render(request, ctx, "home.html", {"posts": posts, "title": "Blog Home"})


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request, ctx: RequestContext = Depends(get_request_context)):
    if ctx.is_authenticated:
        return RedirectResponse("/", status_code=302)
    if not _settings.self_registration_enabled:
        raise Forbidden("Registration is currently disabled.", redirect_to="/login")
    return _render(request, ctx, "register.html", {"title": "Register"})


@router.post("/register")
def register_post(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
) -> RedirectResponse:
    if ctx.is_authenticated:
        return RedirectResponse("/", status_code=302)
    if not _settings.self_registration_enabled:
        logger.info("Registration attempt rejected: self-registration disabled")
        raise Forbidden("Registration is currently disabled.", redirect_to="/login")
    with _redirect_errors("/register"):
        service.register(request.app.state.user_store, username, email, password, confirm_password)
    return _redirect(request, ctx, "/login", success="Registration successful! Please log in.")


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request, ctx: RequestContext = Depends(get_request_context)):
    if ctx.is_authenticated:
        return RedirectResponse("/", status_code=302)
    next_url = _safe_next(request.query_params.get("next"))
    return _render(request, ctx, "login.html", {"title": "Login", "next": next_url})


@router.post("/login")
@limiter.limit(_settings.login_rate_limit)  # below @router so the route runs the limiting wrapper
def login_post(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    email: str = Form(""),
    password: str = Form(""),
    next_path: str = Form("/", alias="next"),
) -> RedirectResponse:
    """Handle the login form. Success rotates the session and sets a new cookie."""
    if ctx.is_authenticated:
        return RedirectResponse("/", status_code=302)
    next_url = _safe_next(next_path)
    retry_url = f"/login?next={quote(next_url, safe='/')}" if next_url != "/" else "/login"
    with _redirect_errors(retry_url, InvalidCredentials):
        session = sessions.login(
            request.app.state.user_store,
            request.app.state.session_store,
            ctx.session,
            email,
            password,
        )
    user = request.app.state.user_store.get_by_id(session.user_id)
    sessions.flash(request.app.state.session_store, session, "success", f"Welcome back, {user.username}!")
    resp = RedirectResponse(next_url, status_code=302)
    sessions.set_session_cookie(resp, session.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(request: Request, ctx: RequestContext = Depends(get_request_context)) -> RedirectResponse:
    """Clear the session binding. Always succeeds, logged in or not."""
    sessions.logout(request.app.state.session_store, ctx.session)
    return _redirect(request, ctx, "/", success="You have been logged out successfully.")


# ---------------------------------------------------------------------------
# GET /profile
# ---------------------------------------------------------------------------


@router.get("/profile", response_class=HTMLResponse)
def profile(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    data = service.profile(ctx, request.app.state.blog_store)
    return _render(request, ctx, "profile.html", {**data, "title": "My Profile"})


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


@router.get("/posts", response_class=HTMLResponse)
def post_index(
    request: Request,
    page: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
) -> HTMLResponse:
    data = service.paginate_posts(
        request.app.state.user_store,
        request.app.state.blog_store,
        page=_parse_page(page),
        per_page=_settings.posts_per_page,
    )
    return _render(request, ctx, "posts/index.html", {**data, "title": "All Posts"})


@router.get("/posts/new", response_class=HTMLResponse)
def post_new_form(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    require_authenticated(ctx)
    return _render(request, ctx, "posts/new.html", {"title": "Create New Post"})


@router.post("/posts")
def post_create(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    title: str = Form(""),
    content: str = Form(""),
) -> RedirectResponse:
    with _redirect_errors("/posts/new"):
        post = service.create_post(ctx, request.app.state.blog_store, title, content)
    return _redirect(request, ctx, f"/posts/{post.id}", success="Post created successfully!")


@router.get("/posts/{post_id}", response_class=HTMLResponse)
def post_show(request: Request, post_id: int, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    data = service.post_detail(request.app.state.user_store, request.app.state.blog_store, post_id)
    return _render(request, ctx, "posts/show.html", {**data, "title": data["post"].title})


@router.get("/posts/{post_id}/edit", response_class=HTMLResponse)
def post_edit_form(request: Request, post_id: int, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    post = require_owner(ctx, request.app.state.blog_store.get_post, post_id, label="Post")
    return _render(request, ctx, "posts/edit.html", {"post": post, "title": "Edit Post"})


@router.post("/posts/{post_id}")
def post_update(
    request: Request,
    post_id: int,
    ctx: RequestContext = Depends(get_request_context),
    title: str = Form(""),
    content: str = Form(""),
) -> RedirectResponse:
    with _redirect_errors(f"/posts/{post_id}/edit"):
        post = service.edit_post(ctx, request.app.state.blog_store, post_id, title, content)
    return _redirect(request, ctx, f"/posts/{post.id}", success="Post updated successfully!")


@router.post("/posts/{post_id}/delete")
def post_delete(request: Request, post_id: int, ctx: RequestContext = Depends(get_request_context)) -> RedirectResponse:
    service.delete_post(ctx, request.app.state.blog_store, post_id)
    return _redirect(request, ctx, "/", success="Post deleted successfully!")


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@router.post("/comments")
def comment_create(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    post_id: int = Form(0),
    text: str = Form(""),
) -> RedirectResponse:
    back = f"/posts/{post_id}" if post_id else "/"
    with _redirect_errors(back):
        service.create_comment(ctx, request.app.state.blog_store, post_id, text)
    return _redirect(request, ctx, f"/posts/{post_id}", success="Comment added successfully!")


@router.post("/comments/{comment_id}/delete")
def comment_delete(
    request: Request,
    comment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    post_id: int = Form(0),
) -> RedirectResponse:
    back = f"/posts/{post_id}" if post_id else "/"
    with _redirect_errors(back, NotFound, Forbidden):
        comment = service.delete_comment(ctx, request.app.state.blog_store, comment_id)
    return _redirect(request, ctx, f"/posts/{comment.post_id}", success="Comment deleted successfully!")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/admin", response_class=HTMLResponse)
def admin_dashboard(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    data = service.admin_overview(ctx, request.app.state.user_store, request.app.state.blog_store)
    return _render(request, ctx, "admin/dashboard.html", {**data, "title": "Admin Dashboard"})


@router.get("/admin/users", response_class=HTMLResponse)
def admin_users(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    users = service.list_users(ctx, request.app.state.user_store)
    return _render(request, ctx, "admin/users.html", {"users": users, "title": "Manage Users"})


@router.post("/admin/users/{user_id}/role")
def admin_set_role(
    request: Request,
    user_id: int,
    ctx: RequestContext = Depends(get_request_context),
    role: str = Form(""),
) -> RedirectResponse:
    with _redirect_errors("/admin/users", ValidationError, NotFound):
        service.set_role(ctx, request.app.state.user_store, user_id, role)
    return _redirect(request, ctx, "/admin/users", success="User role updated.")


@router.post("/admin/users/{user_id}/delete")
def admin_delete_user(request: Request, user_id: int, ctx: RequestContext = Depends(get_request_context)):
    with _redirect_errors("/admin/users", ValidationError, NotFound):
        service.delete_user(
            ctx,
            request.app.state.user_store,
            request.app.state.session_store,
            request.app.state.blog_store,
            user_id,
        )
    return _redirect(request, ctx, "/admin/users", success="User and related content deleted.")


@router.get("/admin/posts", response_class=HTMLResponse)
def admin_posts(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    posts = service.admin_list_posts(ctx, request.app.state.user_store, request.app.state.blog_store)
    return _render(request, ctx, "admin/posts.html", {"posts": posts, "title": "Manage Posts"})


@router.post("/admin/posts/{post_id}/delete")
def admin_delete_post(request: Request, post_id: int, ctx: RequestContext = Depends(get_request_context)):
    with _redirect_errors("/admin/posts", NotFound):
        service.admin_delete_post(ctx, request.app.state.blog_store, post_id)
    return _redirect(request, ctx, "/admin/posts", success="Post deleted.")
