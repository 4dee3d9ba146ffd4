"""
cas/models.py -- Domain types for the CAS client.

Pattern: Data class + enums. CasUser owns the identity shape and its session
serialization; the protocol module creates it, the session module stores it.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field


class CasProtocol(enum.Enum):
    """CAS protocol version. Reserved: both versions behave identically today."""

    V2 = "V2"
    V3 = "V3"

    @classmethod
    def parse(cls, value: str) -> CasProtocol:
        return cls(value.strip().upper())


class NoAuthBehavior(enum.Enum):
    """How a gated route answers a request that carries no CAS identity.

    AUTHENTICATED_OR_403 -- 403 (or redirect to the 403 landing path)
    AUTHENTICATED_OR_404 -- 404 (or redirect to the 404 landing path)
    AUTHENTICATE         -- send the user through CAS login once per session
    FORCE_AUTHENTICATION -- demand a fresh ticket on every request
    """

    AUTHENTICATED_OR_403 = "authenticated_or_403"
    AUTHENTICATED_OR_404 = "authenticated_or_404"
    AUTHENTICATE = "authenticate"
    FORCE_AUTHENTICATION = "force_authentication"

    @classmethod
    def parse(cls, value: str) -> NoAuthBehavior:
        """Accept either the value ("authenticate") or the member name ("AUTHENTICATE")."""
        return cls(value.strip().lower())


@dataclass
class CasUser:
    """An identity confirmed by the CAS server.

    username is never empty -- an empty username means "no user" and is
    represented by the absence of a CasUser, not by an instance.

    attributes holds the <cas:attributes> children of a serviceValidate
    success response, keyed by local tag name. Equality is dict equality, so
    attribute order never matters.
    """

    username: str
    attributes: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.username:
            raise ValueError("CasUser username cannot be empty")

    def to_raw(self) -> str:
        """Serialize to the canonical JSON string stored in the session."""
        return json.dumps(
            {"username": self.username, "attributes": self.attributes},
            sort_keys=True,
            separators=(",", ":"),
        )

    @classmethod
    def from_raw(cls, raw: str) -> CasUser:
        """Inverse of to_raw(). Raises ValueError on anything else."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("CasUser payload must be a JSON object")
        username = data.get("username")
        attributes = data.get("attributes", {})
        if not isinstance(username, str):
            raise ValueError("CasUser payload has no string username")
        if not isinstance(attributes, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in attributes.items()
        ):
            raise ValueError("CasUser attributes must map strings to strings")
        return cls(username=username, attributes=dict(attributes))
