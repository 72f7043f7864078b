"""
api/routes/v1/auth.py -- JSON identity endpoint.

Routes:
  GET /api/v1/auth/me -- current user info (requires a logged-in session)

Uses the same server-side session cookie as the web UI. Anonymous callers get
a 401 JSON envelope rather than a login redirect.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import MeResponse
from auth.dependencies import get_current_user
from auth.models import User

router = APIRouter()


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        role=current_user.role,
    )
