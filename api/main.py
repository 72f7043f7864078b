"""
api/main.py -- FastAPI application entry point for Scribe.

Owns everything that is not a route: logging setup, lifespan (store creation
and teardown), middleware, exception handlers and the health endpoint. The web
UI router is mounted by asgi.py; the JSON routes are mounted here.

Install:   pip install -e .
Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. log_requests          -- one log line per request with latency
  3. load_session          -- server-side session load/create, cookie refresh
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Error policy: every ScribeError raised by a gate or service ends up in
scribe_error_handler. Browser routes get the message flashed into the session
plus a redirect; /api/ routes get the JSON error envelope. Nothing expected
crashes the process, and internals never reach the client.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.sessions import flash, open_session, set_session_cookie
from auth.store import SessionStore, UserStore
from blog.store import BlogStore
from core.config import get_settings
from core.errors import InvalidCredentials, ScribeError, Unauthorized

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("scribe.api")

_GENERIC_FAILURE = "Something went wrong. Please try again."


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the stores on startup and dispose of their engines on shutdown."""
    logger.info("Scribe starting up")
    app.state.user_store = UserStore()
    app.state.session_store = SessionStore(ttl_seconds=_settings.session_ttl_seconds)
    app.state.blog_store = BlogStore()
    logger.info("Stores initialized (session TTL %ds)", _settings.session_ttl_seconds)

    yield

    app.state.blog_store.close()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("Scribe shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Scribe",
    description="A small server-rendered blog.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each newly added middleware around the existing stack, so
# the LAST registration is the outermost layer. Registration below therefore
# runs innermost-first: SlowAPI, session, logging, TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def _sets_session_cookie(response) -> bool:
    prefix = f"{_settings.session_cookie_name}="
    return any(h.startswith(prefix) for h in response.headers.getlist("set-cookie"))


@app.middleware("http")
async def load_session(request: Request, call_next):
    """Attach the server-side Session to request.state before any route runs.

    A request without a live session cookie gets a new anonymous session.
    It only gets a Set-Cookie on the way out if something was stored in it
    (a flash message). Routes that rotate the session (login) set the cookie
    themselves; this middleware then leaves it alone.
    """
    if request.url.path == "/api/v1/health":
        return await call_next(request)
    cookie = request.cookies.get(_settings.session_cookie_name)
    session = await run_in_threadpool(open_session, request.app.state.session_store, cookie)
    request.state.session = session
    response = await call_next(request)
    if session.stored and session.token != cookie and not _sets_session_cookie(response):
        set_session_cookie(response, session.token)
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# JSON responses use the same ErrorResponse envelope everywhere. HTML
# responses are either a flash + redirect (expected errors) or an error page
# rendered by the hook asgi.py stores in app.state.error_page.
# ---------------------------------------------------------------------------


def _json_error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _error_page(request: Request, status_code: int, message: str):
    render = getattr(request.app.state, "error_page", None)
    if render is None:
        return _json_error(status_code, f"http_{status_code}", message)
    return render(request, status_code, message)


def _flash_error(request: Request, message: str) -> None:
    session = getattr(request.state, "session", None)
    if session is not None:
        flash(request.app.state.session_store, session, "error", message)


def _redirect_target(request: Request, exc: ScribeError) -> str:
    if exc.redirect_to:
        return exc.redirect_to
    if isinstance(exc, Unauthorized):
        if request.method == "GET":
            target = request.url.path
            if request.url.query:
                target = f"{target}?{request.url.query}"
            return f"/login?next={quote(target, safe='/')}"
        return "/login"
    if isinstance(exc, InvalidCredentials):
        return "/login"
    return "/"


@app.exception_handler(ScribeError)
def scribe_error_handler(request: Request, exc: ScribeError):
    """Turn an expected failure into a flash + redirect (or a JSON error)."""
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    if _is_api(request):
        return _json_error(exc.status_code, exc.code, exc.message)
    _flash_error(request, exc.message)
    return RedirectResponse(_redirect_target(request, exc), status_code=302)


@app.exception_handler(SQLAlchemyError)
def persistence_error_handler(request: Request, exc: SQLAlchemyError):
    """Log the real error, show the user a generic one. No retry."""
    logger.exception("Persistence error on %s %s", request.method, request.url.path)
    if _is_api(request):
        return _json_error(500, "internal_error", _GENERIC_FAILURE)
    _flash_error(request, _GENERIC_FAILURE)
    return RedirectResponse("/", status_code=302)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """429 for API clients; a flash + redirect back to the login form for browsers."""
    retry_after = int(getattr(exc, "retry_after", 60))
    if _is_api(request):
        response = _json_error(429, "rate_limited", "Too many requests.", str(exc))
    else:
        _flash_error(request, "Too many attempts. Please wait a minute and try again.")
        response = RedirectResponse("/login", status_code=302)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed path/query/body parameters (e.g. /posts/abc)."""
    if _is_api(request):
        return _json_error(422, "validation_error", "Request validation failed.", str(exc.errors()))
    return _error_page(request, 404, "Page not found")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Structured error for HTTP exceptions; 404 page for unknown browser paths.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if _is_api(request):
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
        return _json_error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    message = "Page not found" if exc.status_code == 404 else str(exc.detail)
    return _error_page(request, exc.status_code, message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if _is_api(request):
        return _json_error(500, "internal_error", "An unexpected error occurred.")
    return _error_page(request, 500, _GENERIC_FAILURE)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No session, no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a cheap database probe."""
    components = {"app": "ok"}
    try:
        request.app.state.blog_store.count_posts()
        request.app.state.user_store.count_users()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        components["database"] = "error"
    return HealthResponse(version=VERSION, components=components)
