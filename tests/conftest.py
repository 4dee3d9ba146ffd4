"""
tests/conftest.py -- Shared test fixtures for the CAS client tests.

This module provides:
  - FakeValidator: TicketValidator whose fetch() answers canned
    serviceValidate bodies (or raises) per ticket and records every call
  - cas_config / validator / session_data: building blocks for gate unit tests
  - web_client: TestClient over the real ASGI app with a patched lifespan,
    follow_redirects=False so tests can assert on Location headers

The environment must be set before any api/, web/ or core/ import:
get_settings() is cached on first call, DEBUG lets it auto-generate a
SECRET_KEY, and web/routes.py reads the rate limit at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Union

# CRITICAL: Set before any core/ import so get_settings() picks these up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CAS_URL", "https://cas.example.org/cas")
os.environ.setdefault("APP_URL", "http://testserver")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from cas.config import CasConfig
from cas.errors import NetworkError, ProtocolError
from cas.gate import build_gates
from cas.models import NoAuthBehavior
from cas.validator import TicketValidator

# ---------------------------------------------------------------------------
# serviceValidate bodies
# ---------------------------------------------------------------------------

SUCCESS_ALICE = """<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">
  <cas:authenticationSuccess>
    <cas:user>alice</cas:user>
    <cas:attributes>
      <cas:firstname>Alice</cas:firstname>
      <cas:lastname>Liddell</cas:lastname>
    </cas:attributes>
  </cas:authenticationSuccess>
</cas:serviceResponse>"""

SUCCESS_BOB_NO_ATTRIBUTES = """<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">
  <cas:authenticationSuccess>
    <cas:user>bob</cas:user>
  </cas:authenticationSuccess>
</cas:serviceResponse>"""

FAILURE = """<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">
  <cas:authenticationFailure code="INVALID_TICKET">
    Ticket ST-bad not recognized
  </cas:authenticationFailure>
</cas:serviceResponse>"""


class FakeValidator(TicketValidator):
    """TicketValidator with fetch() replaced: no network, canned outcome per ticket.

    validate() is inherited, so the real parse path runs on the canned bodies.
    """

    def __init__(self, outcomes: dict[str, Union[str, Exception]]) -> None:
        # No config and no HTTP session: fetch() is the only I/O and it is faked.
        self.outcomes = outcomes
        self.calls: list[str] = []

    def fetch(self, ticket: str) -> str:
        self.calls.append(ticket)
        outcome = self.outcomes.get(ticket, FAILURE)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


def _default_outcomes() -> dict[str, Union[str, Exception]]:
    return {
        "ST-alice": SUCCESS_ALICE,
        "ST-bob": SUCCESS_BOB_NO_ATTRIBUTES,
        "ST-bad": FAILURE,
        "ST-timeout": NetworkError("serviceValidate request failed: read timed out"),
        "ST-garbled": ProtocolError("serviceValidate body is not UTF-8"),
        "ST-not-xml": "<html><body>Service unavailable</body>",
    }


# ---------------------------------------------------------------------------
# Unit-test building blocks
# ---------------------------------------------------------------------------


@pytest.fixture
def cas_config() -> CasConfig:
    return CasConfig(
        base_url="https://cas.example.org/cas",
        app_url="https://app.example.org",
        login_service_path="auth/cas",
    )


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator(_default_outcomes())


@pytest.fixture
def session_data() -> dict:
    """A plain dict standing in for the framework's session mapping."""
    return {}


# ---------------------------------------------------------------------------
# Integration client
# ---------------------------------------------------------------------------


def _patch_lifespan(config: CasConfig, fake: FakeValidator):
    """Return a lifespan that wires the fake validator into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.cas_config = config
        app.state.cas_validator = fake
        app.state.cas_gates = build_gates(config, fake)
        app.state.cas_default_behavior = NoAuthBehavior.AUTHENTICATE
        yield

    return test_lifespan


@pytest.fixture
def web_client() -> Generator[tuple[TestClient, FakeValidator], None, None]:
    """Yield (client, fake_validator) with a fresh cookie jar per test.

    follow_redirects=False is essential: the CAS flow is a chain of 307s and
    the tests assert on each Location header.
    """
    config = CasConfig(
        base_url="https://cas.example.org/cas",
        app_url="http://testserver",
        login_service_path="auth/cas",
    )
    fake = FakeValidator(_default_outcomes())
    app.router.lifespan_context = _patch_lifespan(config, fake)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, fake
