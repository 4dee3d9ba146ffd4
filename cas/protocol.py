"""
cas/protocol.py -- CAS endpoint URLs and serviceValidate response parsing.

Everything here is a pure function of a CasConfig (or a response body): no
I/O, no session access, no logging of secrets. The network call lives in
cas/validator.py so tests can swap it out.

Wire format (CAS 2.0/3.0 serviceValidate):

    <cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">
      <cas:authenticationSuccess>
        <cas:user>alice</cas:user>
        <cas:attributes>
          <cas:firstname>Alice</cas:firstname>
        </cas:attributes>
      </cas:authenticationSuccess>
    </cas:serviceResponse>

or <cas:authenticationFailure code="INVALID_TICKET">...</cas:authenticationFailure>
in place of authenticationSuccess. The namespace prefix varies between
servers, so dispatch is on the local tag name only.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Optional
from urllib.parse import urlencode

from cas.config import CasConfig, require_absolute_url
from cas.models import CasUser

logger = logging.getLogger("casclient.protocol")

# Tags that shape the document but carry no identity data.
_STRUCTURAL_TAGS = frozenset({"authenticationSuccess", "serviceResponse", "attributes"})


# ---------------------------------------------------------------------------
# URL construction
# ---------------------------------------------------------------------------


def _endpoint(config: CasConfig, prefix: str, params: list[tuple[str, str]]) -> str:
    url = f"{config.base_url}{prefix}?{urlencode(params)}"
    return require_absolute_url(url, "CAS endpoint URL")


def login_url(config: CasConfig) -> str:
    """CAS login URL. Raises ConfigurationError if it cannot be composed."""
    return _endpoint(config, config.login_prefix, [("service", config.service_url)])


def logout_url(config: CasConfig) -> str:
    """CAS logout URL. The service here is the bare app URL, not the callback."""
    return _endpoint(config, config.logout_prefix, [("service", config.app_url)])


def service_validate_url(config: CasConfig, ticket: str) -> str:
    """serviceValidate URL for ticket.

    The service value must be byte-identical to the one login_url() sent,
    which is why both read config.service_url.
    """
    return _endpoint(
        config,
        config.service_validate_prefix,
        [("service", config.service_url), ("ticket", ticket)],
    )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _local_name(tag: str) -> str:
    # ElementTree spells namespaced tags as "{uri}local"
    return tag.rsplit("}", 1)[-1]


def parse_response(body: str) -> tuple[str, dict[str, str]]:
    """Walk a serviceValidate body and return (username, attributes).

    Every element is visited in document order:
      authenticationFailure  -> logged, nothing captured
      structural tags        -> skipped
      user                   -> leading text becomes the username
      anything else          -> leading text recorded as an attribute under
                                the local tag name; first occurrence wins

    Unparseable XML yields ("", {}). An empty username means the ticket was
    not validated, whatever attributes were collected.
    """
    username = ""
    attributes: dict[str, str] = {}
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        logger.warning("Unparseable serviceValidate response: %s", e)
        return "", {}

    for element in root.iter():
        if not isinstance(element.tag, str):
            continue  # comments and processing instructions
        name = _local_name(element.tag)
        text = element.text
        if name == "authenticationFailure":
            logger.info(
                "CAS authentication failure (code=%s): %s",
                element.get("code", ""),
                (text or "").strip(),
            )
        elif name in _STRUCTURAL_TAGS:
            continue
        elif name == "user":
            if text and not username:
                username = text
        elif text is not None:
            attributes.setdefault(name, text)
    return username, attributes


def parse_user(body: str) -> Optional[CasUser]:
    """Return the CasUser a serviceValidate body describes, or None on failure."""
    username, attributes = parse_response(body)
    if not username:
        return None
    return CasUser(username=username, attributes=attributes)
