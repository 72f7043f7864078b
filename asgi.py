"""
asgi.py -- Application assembly for Scribe.

This is the ONLY file that imports from both api/ and web/. It joins the two
layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about
api/main.py.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import error_page
from web.routes import router as web_router

# Mount the web UI router here, not in api/main.py.
app.include_router(web_router, tags=["Web UI"])

# HTML error pages are rendered by the web layer; api/main.py falls back to
# JSON when this hook is absent.
app.state.error_page = error_page
