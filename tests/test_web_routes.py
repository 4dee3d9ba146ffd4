"""
tests/test_web_routes.py -- Integration tests for the CAS login round-trip.

These tests drive the real ASGI stack (SessionMiddleware, the gates, the web
routes) through the web_client fixture with follow_redirects=False, so every
307 in the CAS flow can be asserted on its Location header. The CAS server
itself is the FakeValidator from conftest.py.

Coverage:
  - Anonymous /user -> 307 to CAS login, service = the callback URL
  - Callback with a good ticket -> 307 back to the page that started it
  - Logged-in pages render the username, escaped
  - Bad, unreachable or garbled tickets -> back to CAS login, never access
  - /user_or_403 and /user_or_404 never redirect to CAS
  - /api/v1/auth/me answers 401 JSON until the browser has logged in
  - Logout clears the session and redirects to CAS logout
  - The CAS callback answers 429 once LOGIN_RATE_LIMIT is exhausted
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from cas.models import NoAuthBehavior
from conftest import FakeValidator
from core.config import get_settings

LOGIN = "https://cas.example.org/cas/login?service=http%3A%2F%2Ftestserver%2Fauth%2Fcas"
LOGOUT = "https://cas.example.org/cas/logout?service=http%3A%2F%2Ftestserver"


def _login(client: TestClient, start: str = "/user", ticket: str = "ST-alice") -> None:
    """Walk the round-trip: protected page, (CAS login), callback with ticket."""
    assert client.get(start).status_code == 307
    resp = client.get("/auth/cas", params={"ticket": ticket})
    assert resp.status_code == 307


class TestLoginRoundTrip:
    def test_anonymous_user_page_redirects_to_cas_login(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, fake = web_client
        resp = client.get("/user")
        assert resp.status_code == 307
        assert resp.headers["location"] == LOGIN
        assert fake.calls == []

    def test_service_param_is_the_callback_url(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, _ = web_client
        location = client.get("/user/welcome").headers["location"]
        assert parse_qs(urlsplit(location).query)["service"] == ["http://testserver/auth/cas"]

    def test_callback_returns_to_the_page_that_started_login(
        self, web_client: tuple[TestClient, FakeValidator]
    ) -> None:
        client, fake = web_client
        client.get("/user/welcome")

        resp = client.get("/auth/cas", params={"ticket": "ST-alice"})

        assert resp.status_code == 307
        assert resp.headers["location"] == "http://testserver/user/welcome"
        assert fake.calls == ["ST-alice"]

    def test_logged_in_page_shows_username(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, fake = web_client
        _login(client)

        resp = client.get("/user")

        assert resp.status_code == 200
        assert "Welcome <b>alice</b>!" in resp.text
        assert "/auth/cas/logout" in resp.text
        # The identity is in the session now; no second validation.
        assert fake.calls == ["ST-alice"]

    def test_username_is_html_escaped(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, fake = web_client
        fake.outcomes["ST-xss"] = (
            '<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas"><cas:authenticationSuccess>'
            "<cas:user>&lt;script&gt;</cas:user>"
            "</cas:authenticationSuccess></cas:serviceResponse>"
        )
        _login(client, ticket="ST-xss")
        resp = client.get("/user")
        assert "<script>" not in resp.text
        assert "&lt;script&gt;" in resp.text

    def test_callback_without_pending_redirect_goes_to_app_url(
        self, web_client: tuple[TestClient, FakeValidator]
    ) -> None:
        client, _ = web_client
        resp = client.get("/auth/cas", params={"ticket": "ST-bob"})
        assert resp.status_code == 307
        assert resp.headers["location"] == "http://testserver"

    def test_ticket_on_protected_page_is_validated_in_place(
        self, web_client: tuple[TestClient, FakeValidator]
    ) -> None:
        client, fake = web_client
        resp = client.get("/user", params={"ticket": "ST-bob"})
        assert resp.status_code == 200
        assert "Welcome <b>bob</b>!" in resp.text
        assert fake.calls == ["ST-bob"]

    @pytest.mark.parametrize("ticket", ["ST-bad", "ST-timeout", "ST-garbled", "ST-not-xml"])
    def test_failed_ticket_sends_browser_back_to_cas(
        self, web_client: tuple[TestClient, FakeValidator], ticket: str
    ) -> None:
        client, _ = web_client
        client.get("/user")

        resp = client.get("/auth/cas", params={"ticket": ticket})

        assert resp.status_code == 307
        assert resp.headers["location"] == LOGIN
        assert client.get("/user").status_code == 307

    def test_pending_redirect_survives_a_failed_ticket(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, _ = web_client
        client.get("/user/welcome")
        client.get("/auth/cas", params={"ticket": "ST-bad"})

        resp = client.get("/auth/cas", params={"ticket": "ST-alice"})

        assert resp.headers["location"] == "http://testserver/user/welcome"


class TestAuthenticatedOrError:
    @pytest.mark.parametrize(
        "path, status_code",
        [
            ("/user_or_403", 403),
            ("/user_or_403/welcome", 403),
            ("/user_or_404", 404),
            ("/user_or_404/welcome", 404),
        ],
    )
    def test_anonymous_gets_status_not_redirect(
        self, web_client: tuple[TestClient, FakeValidator], path: str, status_code: int
    ) -> None:
        client, fake = web_client
        resp = client.get(path, params={"ticket": "ST-alice"})
        assert resp.status_code == status_code
        assert "location" not in resp.headers
        assert fake.calls == []

    @pytest.mark.parametrize("path", ["/user_or_403", "/user_or_404/welcome"])
    def test_logged_in_passes(self, web_client: tuple[TestClient, FakeValidator], path: str) -> None:
        client, _ = web_client
        _login(client)
        resp = client.get(path)
        assert resp.status_code == 200
        assert "alice" in resp.text


class TestMeEndpoint:
    def test_anonymous_is_401_json(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, _ = web_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_logged_in_returns_identity(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, _ = web_client
        _login(client)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json() == {
            "username": "alice",
            "attributes": {"firstname": "Alice", "lastname": "Liddell"},
            "logout_url": LOGOUT,
        }


class TestLogout:
    def test_logout_redirects_to_cas_and_forgets_user(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, _ = web_client
        _login(client)

        resp = client.get("/auth/cas/logout")

        assert resp.status_code == 307
        assert resp.headers["location"] == LOGOUT
        assert client.get("/user").status_code == 307
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_anonymous_logout_still_redirects(self, web_client: tuple[TestClient, FakeValidator]) -> None:
        client, _ = web_client
        resp = client.get("/auth/cas/logout")
        assert resp.status_code == 307
        assert resp.headers["location"] == LOGOUT


def test_guest_page_is_public(web_client: tuple[TestClient, FakeValidator]) -> None:
    client, _ = web_client
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Welcome <b>Guest</b>!" in resp.text


class TestCallbackRateLimit:
    @pytest.fixture
    def low_limit(self, monkeypatch):
        """LOGIN_RATE_LIMIT=2/minute with empty counters, restored afterwards."""
        monkeypatch.setattr(get_settings(), "login_rate_limit", "2/minute")
        limiter.reset()
        yield
        limiter.reset()

    def test_callback_is_limited(self, web_client: tuple[TestClient, FakeValidator], low_limit) -> None:
        client, fake = web_client
        codes = [client.get("/auth/cas", params={"ticket": "ST-bad"}).status_code for _ in range(4)]
        assert codes == [307, 307, 429, 429]
        assert fake.calls == ["ST-bad", "ST-bad"]

    def test_limited_response_is_structured(self, web_client: tuple[TestClient, FakeValidator], low_limit) -> None:
        client, _ = web_client
        for _ in range(2):
            client.get("/auth/cas", params={"ticket": "ST-bad"})
        resp = client.get("/auth/cas", params={"ticket": "ST-bad"})
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "Retry-After" in resp.headers

    def test_other_pages_are_not_limited(self, web_client: tuple[TestClient, FakeValidator], low_limit) -> None:
        client, _ = web_client
        codes = [client.get("/user").status_code for _ in range(4)]
        assert codes == [307, 307, 307, 307]


def test_force_authentication_page_never_renders(web_client: tuple[TestClient, FakeValidator]) -> None:
    """The ticket lands on the callback, so a forced /user asks CAS again every time."""
    client, fake = web_client
    client.app.state.cas_default_behavior = NoAuthBehavior.FORCE_AUTHENTICATION

    assert client.get("/user").headers["location"] == LOGIN
    resp = client.get("/auth/cas", params={"ticket": "ST-alice"})
    assert resp.headers["location"] == "http://testserver/user"

    resp = client.get("/user")
    assert resp.status_code == 307
    assert resp.headers["location"] == LOGIN
    assert fake.calls == ["ST-alice"]
