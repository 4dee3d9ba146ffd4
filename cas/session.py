"""
cas/session.py -- The boundary between the gate and session storage.

The gate never touches raw session keys. It talks to CasSession, which wraps
whatever mutable mapping the web framework provides (Starlette's
request.session, a plain dict in tests) and owns the two CAS keys:

  cas_user             CasUser.to_raw() of the authenticated identity
  after_logged_in_url  absolute URL to return to once CAS login completes

How the mapping is persisted (signed cookie, server-side store, ...) is the
framework's concern.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any, Optional

from cas.errors import SessionError
from cas.models import CasUser

logger = logging.getLogger("casclient.session")

CAS_USER_SESSION_KEY = "cas_user"
AFTER_LOGGED_IN_URL_SESSION_KEY = "after_logged_in_url"


class CasSession:
    """CAS view of one request's session mapping."""

    def __init__(self, data: MutableMapping[str, Any]) -> None:
        self._data = data

    def get_identity(self) -> Optional[CasUser]:
        raw = self._data.get(CAS_USER_SESSION_KEY)
        if raw is None:
            return None
        try:
            return CasUser.from_raw(raw)
        except (TypeError, ValueError) as e:
            # A stale or tampered value is treated as "not logged in".
            logger.warning("Discarding unreadable CAS identity from session: %s", e)
            return None

    def set_identity(self, user: CasUser) -> None:
        self._store(CAS_USER_SESSION_KEY, user.to_raw())

    def get_pending_redirect(self) -> Optional[str]:
        value = self._data.get(AFTER_LOGGED_IN_URL_SESSION_KEY)
        return value if isinstance(value, str) and value else None

    def set_pending_redirect(self, url: str) -> None:
        self._store(AFTER_LOGGED_IN_URL_SESSION_KEY, url)

    def pop_pending_redirect(self) -> Optional[str]:
        """Read and clear the pending redirect in one step."""
        value = self.get_pending_redirect()
        self._data.pop(AFTER_LOGGED_IN_URL_SESSION_KEY, None)
        return value

    def clear(self) -> None:
        """Forget the identity and any pending redirect."""
        self._data.pop(CAS_USER_SESSION_KEY, None)
        self._data.pop(AFTER_LOGGED_IN_URL_SESSION_KEY, None)

    def _store(self, key: str, value: str) -> None:
        try:
            self._data[key] = value
        except (TypeError, KeyError, RuntimeError) as e:
            raise SessionError(f"could not store {key} in session: {e}") from e
