"""
cas/dependencies.py -- FastAPI adapter for the CAS gate.

Translates a Starlette Request into the gate's inputs and a GateDecision back
into a Response. Everything protocol- or policy-related stays in cas/gate.py.

Requires SessionMiddleware on the app (request.session) and a lifespan that
puts a {NoAuthBehavior: AuthGate} dict on app.state.cas_gates (and,
optionally, the default behavior on app.state.cas_default_behavior).

Two ways to protect a route:

  Gate (may redirect to CAS, validates tickets):
      @router.get("/user")
      def user_page(request: Request):
          if response := require_cas(request, NoAuthBehavior.AUTHENTICATE):
              return response
          ...

  Dependency (JSON APIs -- never redirects, 401 if no identity):
      @router.get("/me")
      async def me(user: CasUser = Depends(get_current_user)): ...

require_cas() may block on the serviceValidate HTTP call, so routes that use
it are plain `def` handlers; FastAPI runs those in its thread pool.

Layer rule: no imports from api/ or web/. fastapi/starlette imports are
allowed because this module is the framework adapter.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import RedirectResponse, Response

from cas.gate import AuthGate, GateDecision, RequestFacts
from cas.models import CasUser, NoAuthBehavior
from cas.session import CasSession


def cas_session(request: Request) -> CasSession:
    return CasSession(request.session)


def request_facts(request: Request) -> RequestFacts:
    """Absolute URL of the request and its `ticket` query parameter, if any."""
    return RequestFacts(url=str(request.url), ticket=request.query_params.get("ticket"))


def to_response(decision: GateDecision) -> Optional[Response]:
    """Return None for pass-through, else the redirect or bare-status response."""
    if decision.passes:
        return None
    if decision.location is not None:
        return RedirectResponse(decision.location, status_code=decision.status_code)
    return Response(status_code=decision.status_code)


def get_gate(request: Request, behavior: Optional[NoAuthBehavior] = None) -> AuthGate:
    """The app's gate for behavior; None picks the configured default behavior."""
    if behavior is None:
        behavior = getattr(request.app.state, "cas_default_behavior", NoAuthBehavior.AUTHENTICATE)
    return request.app.state.cas_gates[behavior]


def require_cas(request: Request, behavior: Optional[NoAuthBehavior] = None) -> Optional[Response]:
    """Run the gate for behavior (default: CAS_NO_AUTH_BEHAVIOR). None means proceed.

    Call at the top of protected route handlers:
        if response := require_cas(request, NoAuthBehavior.AUTHENTICATE):
            return response
    """
    gate = get_gate(request, behavior)
    return to_response(gate.check(cas_session(request), request_facts(request)))


def try_get_current_user(request: Request) -> Optional[CasUser]:
    """Return the CAS identity stored in the session, or None. Never raises."""
    return cas_session(request).get_identity()


def get_current_user(request: Request) -> CasUser:
    """Require a CAS identity. Raises HTTP 401 if there is none.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: CasUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "CAS authentication required."},
        )
    return user
