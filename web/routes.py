"""
web/routes.py -- Browser-facing routes: the CAS callback, logout, and pages
protected with each NoAuthBehavior.

These routes share app.state with the API routes (same CasConfig, validator
and gates) but return HTML and redirects instead of JSON.

Routes:
  GET  /                         -- public guest page
  GET  /user, /user/welcome      -- CAS_NO_AUTH_BEHAVIOR (default AUTHENTICATE)
  GET  /user_or_403[/welcome]    -- AUTHENTICATED_OR_403
  GET  /user_or_404[/welcome]    -- AUTHENTICATED_OR_404
  GET  /{CAS_LOGIN_SERVICE_PATH} -- CAS callback; the `service` URL CAS returns to
  GET  /{CAS_LOGOUT_PATH}        -- clear the session, redirect to CAS logout

Protected handlers are plain `def` so FastAPI runs them in its thread pool:
require_cas() may block on the serviceValidate call.

The callback and logout paths come from settings at import time, so set
CAS_LOGIN_SERVICE_PATH / CAS_LOGOUT_PATH before importing this module.
"""

import html
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from api.limiter import limiter
from cas.dependencies import cas_session, get_gate, require_cas, to_response, try_get_current_user
from cas.gate import TEMPORARY_REDIRECT
from cas.models import NoAuthBehavior
from core.config import get_settings

logger = logging.getLogger("casclient.web")

_cfg = get_settings()

LOGIN_PATH = "/" + _cfg.cas_login_service_path.strip("/")
LOGOUT_PATH = "/" + _cfg.cas_logout_path.strip("/")

router = APIRouter()


def _login_rate_limit() -> str:
    # Evaluated by slowapi on every request.
    return get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Page helpers
# ---------------------------------------------------------------------------


def _page(body: str) -> HTMLResponse:
    return HTMLResponse(
        f"<!doctype html><html><head><title>CAS Client</title></head><body>{body}</body></html>",
    )


def _user_page(request: Request) -> HTMLResponse:
    user = try_get_current_user(request)
    username = user.username if user else "guest"
    return _page(
        f"Welcome <b>{html.escape(username)}</b>!<br><br>"
        f"<a href='{html.escape(LOGOUT_PATH)}'>Logout</a>"
    )


def _protected(request: Request, behavior: Optional[NoAuthBehavior] = None) -> Response:
    if response := require_cas(request, behavior):
        return response
    return _user_page(request)


# ---------------------------------------------------------------------------
# CAS callback and logout
# ---------------------------------------------------------------------------


@router.get(LOGIN_PATH)
@limiter.limit(_login_rate_limit)
def cas_login(request: Request) -> Response:
    """Where the CAS server sends the browser back with ?ticket=.

    The AUTHENTICATE gate validates the ticket and, when a post-login redirect
    is pending, answers with it directly. Reaching the body means the user is
    logged in with nowhere pending: go to the application root.
    """
    if response := require_cas(request, NoAuthBehavior.AUTHENTICATE):
        return response
    app_url = request.app.state.cas_config.app_url
    return RedirectResponse(app_url or "/", status_code=TEMPORARY_REDIRECT)


@router.get(LOGOUT_PATH)
def cas_logout(request: Request) -> Response:
    """Clear the CAS identity, then hand the browser to the CAS logout page."""
    user = try_get_current_user(request)
    logger.info("CAS logout for %s", user.username if user else "anonymous session")
    gate = get_gate(request, NoAuthBehavior.AUTHENTICATE)
    return to_response(gate.logout(cas_session(request)))


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

if LOGIN_PATH != "/":

    @router.get("/", response_class=HTMLResponse)
    async def guest(request: Request) -> HTMLResponse:
        """Public landing page with links to each kind of protected page."""
        links = "".join(
            f"<br><a href='{path}'>Login (to '{path}')</a>"
            for path in ("/user", "/user/welcome", "/user_or_403", "/user_or_404")
        )
        return _page(f"Welcome <b>Guest</b>!<br>{links}")


@router.get("/user", response_class=HTMLResponse)
@router.get("/user/welcome", response_class=HTMLResponse)
def user(request: Request) -> Response:
    return _protected(request)


@router.get("/user_or_403", response_class=HTMLResponse)
@router.get("/user_or_403/welcome", response_class=HTMLResponse)
def user_or_403(request: Request) -> Response:
    return _protected(request, NoAuthBehavior.AUTHENTICATED_OR_403)


@router.get("/user_or_404", response_class=HTMLResponse)
@router.get("/user_or_404/welcome", response_class=HTMLResponse)
def user_or_404(request: Request) -> Response:
    return _protected(request, NoAuthBehavior.AUTHENTICATED_OR_404)

