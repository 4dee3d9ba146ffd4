"""
api/routes/v1/auth.py -- CAS identity endpoint for API clients.

Routes:
  GET /api/v1/auth/me  -- current CAS user and the CAS logout URL (requires auth)

API routes never start a CAS login themselves: a JSON client cannot follow
the browser round-trip through the CAS login page. Without a session identity
they answer 401 and leave it to the browser UI to send the user through
/{login_service_path}.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import MeResponse
from cas.dependencies import get_current_user
from cas.errors import ConfigurationError
from cas.models import CasUser
from cas.protocol import logout_url

logger = logging.getLogger("casclient.api.auth")

router = APIRouter()


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request, current_user: CasUser = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated CAS user."""
    try:
        cas_logout = logout_url(request.app.state.cas_config)
    except ConfigurationError as e:
        logger.error("Could not build CAS logout URL: %s", e)
        cas_logout = None
    return MeResponse(
        username=current_user.username,
        attributes=current_user.attributes,
        logout_url=cas_logout,
    )
