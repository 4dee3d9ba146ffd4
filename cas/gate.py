"""
cas/gate.py -- The authentication gate: decide what a request is allowed to do.

Pattern: pure decision function over explicit inputs.

    AuthGate.check(session, facts) -> GateDecision

  session  CasSession -- identity and pending post-login redirect
  facts    RequestFacts -- absolute request URL and the `ticket` query param
  result   GateDecision -- pass through, redirect (307), or bare status

Framework adapters (cas/dependencies.py for FastAPI) translate their request
and session objects into these types and apply the decision. The gate itself
never sees a framework object.

Decision table:

  behavior              identity  ticket  action
  AUTHENTICATE          yes       -       pass
  AUTHENTICATE          no        no      save URL, redirect to CAS login
  AUTHENTICATE          no        yes     validate ticket
  FORCE_AUTHENTICATION  -         no      save URL, redirect to CAS login
  FORCE_AUTHENTICATION  -         yes     validate ticket
  AUTHENTICATED_OR_403  yes       -       pass
  AUTHENTICATED_OR_403  no        -       403 (or redirect to url_to_403)
  AUTHENTICATED_OR_404  yes       -       pass
  AUTHENTICATED_OR_404  no        -       404 (or redirect to url_to_404)

Ticket validation: on success store the identity, pop the pending redirect
and go there (else config.default_after_login_path, else pass). On any
failure fall back to the "no ticket" branch. The gate fails closed: nothing
that goes wrong during validation ever results in pass-through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from cas.config import CasConfig
from cas.errors import ConfigurationError, NetworkError, ProtocolError, SessionError
from cas.models import CasUser, NoAuthBehavior
from cas.protocol import login_url, logout_url

if TYPE_CHECKING:
    from cas.session import CasSession
    from cas.validator import TicketValidator

logger = logging.getLogger("casclient.gate")

TEMPORARY_REDIRECT = 307


@dataclass(frozen=True)
class RequestFacts:
    """What the gate needs to know about the incoming request.

    url is the absolute URL (scheme, host, path, query). ticket is None when
    the query string has no `ticket` parameter; "" still counts as present.
    """

    url: str
    ticket: Optional[str] = None


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate check. status_code None means "let it through"."""

    status_code: Optional[int] = None
    location: Optional[str] = None

    @property
    def passes(self) -> bool:
        return self.status_code is None

    @classmethod
    def pass_through(cls) -> GateDecision:
        return cls()

    @classmethod
    def redirect(cls, location: str) -> GateDecision:
        return cls(status_code=TEMPORARY_REDIRECT, location=location)

    @classmethod
    def status(cls, status_code: int) -> GateDecision:
        return cls(status_code=status_code)


class AuthGate:
    """One configured gate per NoAuthBehavior; immutable and shared by requests."""

    def __init__(
        self,
        config: CasConfig,
        validator: TicketValidator,
        behavior: NoAuthBehavior = NoAuthBehavior.AUTHENTICATE,
        url_to_403: Optional[str] = None,
        url_to_404: Optional[str] = None,
    ) -> None:
        self.config = config
        self.validator = validator
        self.behavior = behavior
        self.url_to_403 = url_to_403
        self.url_to_404 = url_to_404

    def __repr__(self) -> str:
        return f"AuthGate(behavior={self.behavior.name}, service={self.config.service_url!r})"

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def check(self, session: CasSession, facts: RequestFacts) -> GateDecision:
        """Apply this gate's behavior to one request."""
        if self.behavior is NoAuthBehavior.AUTHENTICATED_OR_403:
            return self._authenticated_or_error(session, 403, self.url_to_403)
        if self.behavior is NoAuthBehavior.AUTHENTICATED_OR_404:
            return self._authenticated_or_error(session, 404, self.url_to_404)
        if self.behavior is NoAuthBehavior.AUTHENTICATE and session.get_identity() is not None:
            return GateDecision.pass_through()
        return self._authenticate(session, facts)

    def logout(self, session: CasSession) -> GateDecision:
        """Forget the CAS identity and send the browser to the CAS logout page."""
        session.clear()
        try:
            return GateDecision.redirect(logout_url(self.config))
        except ConfigurationError as e:
            logger.error("Could not build CAS logout URL: %s", e)
        if self.url_to_404:
            return GateDecision.redirect(self.url_to_404)
        return GateDecision.status(404)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _authenticated_or_error(
        self, session: CasSession, status_code: int, landing: Optional[str]
    ) -> GateDecision:
        if session.get_identity() is not None:
            return GateDecision.pass_through()
        if landing:
            return GateDecision.redirect(landing)
        return GateDecision.status(status_code)

    def _authenticate(self, session: CasSession, facts: RequestFacts) -> GateDecision:
        if facts.ticket is None:
            logger.debug("No service ticket on %s", facts.url)
            return self._needs_authentication(session, facts)
        user = self._validate_ticket(facts.ticket)
        if user is None:
            return self._needs_authentication(session, facts)
        return self._logged_in(session, user)

    def _validate_ticket(self, ticket: str) -> Optional[CasUser]:
        try:
            return self.validator.validate(ticket)
        except (NetworkError, ProtocolError) as e:
            logger.warning("CAS ticket validation failed: %s", e)
            return None

    def _needs_authentication(self, session: CasSession, facts: RequestFacts) -> GateDecision:
        # First pending redirect wins until it is consumed after login.
        if session.get_pending_redirect() is None:
            try:
                session.set_pending_redirect(facts.url)
            except SessionError as e:
                logger.error("Error while saving after_logged_in_url in session: %s", e)
        try:
            return GateDecision.redirect(login_url(self.config))
        except ConfigurationError as e:
            logger.error("Could not build CAS login URL: %s", e)
            return GateDecision.status(500)

    def _logged_in(self, session: CasSession, user: CasUser) -> GateDecision:
        logger.info("CAS user %s logged in", user.username)
        try:
            session.set_identity(user)
        except SessionError as e:
            logger.error("Error while saving cas_user in session: %s", e)
        target = session.pop_pending_redirect() or self.config.default_after_login_path
        if target:
            return GateDecision.redirect(target)
        return GateDecision.pass_through()


def build_gates(
    config: CasConfig,
    validator: TicketValidator,
    url_to_403: Optional[str] = None,
    url_to_404: Optional[str] = None,
) -> dict[NoAuthBehavior, AuthGate]:
    """One gate per behavior, all sharing config, validator and landing paths."""
    return {
        behavior: AuthGate(config, validator, behavior, url_to_403=url_to_403, url_to_404=url_to_404)
        for behavior in NoAuthBehavior
    }
