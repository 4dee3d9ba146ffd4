"""
cas/validator.py -- Service ticket validation over HTTP.

The only module in cas/ that touches the network. One GET per ticket:
CAS tickets are single-use, so a retry after a transient failure could be
seen by the server as a second (failing) redemption. There is no retry and
no backoff; a failed validation is terminal for that ticket.

Every call carries a bounded timeout. Timeouts, connection errors and non-2xx
answers all surface as NetworkError; the gate turns them into a login
redirect, never into access.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from cas.config import CasConfig
from cas.errors import NetworkError, ProtocolError
from cas.models import CasUser
from cas.protocol import parse_user, service_validate_url

logger = logging.getLogger("casclient.validator")

DEFAULT_TIMEOUT = 10.0


class TicketValidator:
    """Redeem service tickets against the configured CAS server.

    Thread-safe for concurrent requests: the config is immutable and
    requests.Session may be shared for connection pooling.
    """

    def __init__(
        self,
        config: CasConfig,
        timeout: float = DEFAULT_TIMEOUT,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._owns_http = http is None
        if http is None:
            http = requests.Session()
            # The CAS server is a known endpoint; a long redirect chain is a
            # misconfiguration or an attack, not something to follow.
            http.max_redirects = 3
        self._http = http

    def fetch(self, ticket: str) -> str:
        """GET the serviceValidate endpoint and return the body as text.

        Raises:
            NetworkError:  connection failure, timeout, or non-2xx status.
            ProtocolError: body is not valid UTF-8.
        """
        url = service_validate_url(self.config, ticket)
        logger.debug("Validating service ticket %s", ticket)
        try:
            resp = self._http.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"serviceValidate request failed: {e}") from e
        try:
            return resp.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"serviceValidate body is not UTF-8: {e}") from e

    def validate(self, ticket: str) -> CasUser:
        """Redeem ticket and return the identity the CAS server vouches for.

        Raises:
            NetworkError:  as fetch().
            ProtocolError: undecodable body, or a response with no username
                           (authenticationFailure or unparseable XML).
        """
        user = parse_user(self.fetch(ticket))
        if user is None:
            raise ProtocolError("serviceValidate response carries no user")
        return user

    def close(self) -> None:
        if self._owns_http:
            self._http.close()
