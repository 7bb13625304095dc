"""
tests/test_auth_routes.py -- Integration tests for the /auth endpoint.

These tests run through the real ASGI stack (TrustedHost, CORS, SlowAPI,
exception handlers) with the auth_client fixture: in-memory stores plus a
FakeGoogleOAuthClient whose code exchange is scripted. follow_redirects is
off, so every assertion is on the raw Location and Set-Cookie headers.

Coverage:
  - Dispatch: default action, unknown action (400), wrong method (405), OPTIONS
  - signin: 302 to Google with a verifiable state, open-redirect guard, 500 when unconfigured
  - callback: success sets the cookie and honours the state, every failure
    redirects to /?error=<code> without writing anything
  - signout: always 200 and always clears the cookie
  - status: unauthenticated/authenticated shapes, lookup failures downgrade to false
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from auth.errors import UpstreamAuthError
from auth.models import OAuthIdentity
from auth.tokens import generate_state_token, verify_state_token
from core.config import get_settings

COOKIE = get_settings().session_cookie_name

_B64URL = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def _set_cookie_headers(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


def _sign_in(auth_client, state: str | None = None):
    """Run a successful callback and return (response, session token)."""
    client = auth_client.client
    params = {"action": "callback", "code": "good-code"}
    if state is not None:
        params["state"] = state
    resp = client.get("/auth", params=params)
    assert resp.status_code == 302
    token = resp.cookies.get(COOKIE)
    assert token
    return resp, token


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_missing_action_means_status(self, auth_client) -> None:
        resp = auth_client.client.get("/auth")
        assert resp.status_code == 200
        assert resp.json() == {"isAuthenticated": False, "user": None}

    def test_unknown_action_is_400(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "frobnicate"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_action"

    def test_callback_via_post_is_405(self, auth_client) -> None:
        resp = auth_client.client.post("/auth", params={"action": "callback", "code": "x"})
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "method_not_allowed"
        assert auth_client.oauth.exchanged == []

    def test_signout_via_get_is_405(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "signout"})
        assert resp.status_code == 405

    def test_unsupported_http_method_gets_error_envelope(self, auth_client) -> None:
        resp = auth_client.client.put("/auth", params={"action": "status"})
        assert resp.status_code == 405
        assert "error" in resp.json()

    def test_options_returns_empty_200(self, auth_client) -> None:
        resp = auth_client.client.options("/auth")
        assert resp.status_code == 200
        assert resp.content == b""

    def test_cors_preflight_allows_configured_origin(self, auth_client) -> None:
        origin = get_settings().cors_origins[0]
        resp = auth_client.client.options(
            "/auth",
            headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == origin
        assert resp.headers["access-control-allow-credentials"] == "true"

    def test_untrusted_host_rejected(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", headers={"Host": "evil.example"})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


class TestSignIn:
    def test_redirects_to_google_with_state(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "signin", "next": "/reports/7"})
        assert resp.status_code == 302
        assert resp.headers["cache-control"] == "no-store"
        location = urlparse(resp.headers["location"])
        assert location.netloc == "accounts.google.com"
        params = parse_qs(location.query)
        assert params["client_id"] == ["test-client-id"]
        assert verify_state_token(params["state"][0]) == {"redirect_to": "/reports/7"}

    def test_missing_next_defaults_to_root(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "signin"})
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        assert verify_state_token(state) == {"redirect_to": "/"}

    def test_absolute_next_is_not_sealed(self, auth_client) -> None:
        """[C2] An absolute URL in ?next= never reaches the state token."""
        resp = auth_client.client.get("/auth", params={"action": "signin", "next": "https://evil.example/phish"})
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        assert verify_state_token(state) == {"redirect_to": "/"}

    def test_unconfigured_provider_is_500(self, auth_client) -> None:
        auth_client.oauth.client_id = ""
        resp = auth_client.client.get("/auth", params={"action": "signin"})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "not_configured"


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


class TestCallback:
    def test_success_sets_cookie_and_redirects_to_state_path(self, auth_client) -> None:
        resp, token = _sign_in(auth_client, state=generate_state_token("/dashboard"))
        assert resp.headers["location"] == "/dashboard"
        assert resp.headers["cache-control"] == "no-store"

        cookie = next(h for h in _set_cookie_headers(resp) if h.startswith(f"{COOKIE}="))
        lowered = cookie.lower()
        assert "httponly" in lowered
        assert "samesite=lax" in lowered
        assert "path=/" in lowered
        assert f"max-age={get_settings().session_ttl_seconds}" in lowered

        found = auth_client.service.session_store.get_valid_session(token)
        assert found is not None
        assert found[1].email == "ada@example.com"

    def test_missing_state_redirects_to_upload(self, auth_client) -> None:
        resp, _ = _sign_in(auth_client)
        assert resp.headers["location"] == "/upload"

    @pytest.mark.parametrize("segment", [0, 1, 2], ids=["header", "payload", "signature"])
    def test_tampered_state_redirects_to_upload(self, auth_client, segment: int) -> None:
        """Flip the lowest bit of the last character of one segment of the state."""
        parts = generate_state_token("/dashboard").split(".")
        last = parts[segment][-1]
        parts[segment] = parts[segment][:-1] + _B64URL[_B64URL.index(last) ^ 1]
        resp, _ = _sign_in(auth_client, state=".".join(parts))
        assert resp.headers["location"] == "/upload"

    def test_expired_state_redirects_to_upload(self, auth_client) -> None:
        stale = generate_state_token(
            "/dashboard", ttl_seconds=60, now=datetime.now(timezone.utc) - timedelta(hours=2)
        )
        resp, _ = _sign_in(auth_client, state=stale)
        assert resp.headers["location"] == "/upload"

    def test_repeat_sign_in_reuses_user(self, auth_client) -> None:
        _sign_in(auth_client)
        auth_client.oauth.identity = OAuthIdentity("google-123", "Ada King", "ada@king.example")
        _, token = _sign_in(auth_client)

        users = auth_client.service.user_store
        assert users.count() == 1
        user = users.get_by_external_id("google-123")
        assert user.name == "Ada King"
        assert user.email == "ada@king.example"
        assert len(auth_client.service.session_store.list_for_user(user.id)) == 2

    def test_provider_error_skips_exchange(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "callback", "error": "access_denied"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=access_denied"
        assert auth_client.oauth.exchanged == []
        assert auth_client.service.user_store.count() == 0

    def test_provider_error_is_url_encoded(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "callback", "error": "bad thing&x=1"})
        assert parse_qs(urlparse(resp.headers["location"]).query) == {"error": ["bad thing&x=1"]}

    def test_missing_code(self, auth_client) -> None:
        resp = auth_client.client.get("/auth", params={"action": "callback"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=missing_code"
        assert auth_client.oauth.exchanged == []

    def test_identity_without_email_creates_nothing(self, auth_client) -> None:
        auth_client.oauth.identity = OAuthIdentity("google-999", "Nomail", "")
        resp = auth_client.client.get("/auth", params={"action": "callback", "code": "c"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=no_email"
        assert auth_client.service.user_store.count() == 0
        assert not any(h.startswith(f"{COOKIE}=") for h in _set_cookie_headers(resp))

    def test_upstream_failure_redirects_with_code(self, auth_client) -> None:
        auth_client.oauth.error = UpstreamAuthError("Google rejected the authorization code.")
        resp = auth_client.client.get("/auth", params={"action": "callback", "code": "c"})
        assert resp.headers["location"] == "/?error=oauth_failed"
        assert auth_client.service.user_store.count() == 0

    def test_unexpected_failure_redirects_with_server_error(self, auth_client) -> None:
        auth_client.oauth.error = RuntimeError("boom")
        resp = auth_client.client.get("/auth", params={"action": "callback", "code": "c"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=server_error"
        assert "boom" not in resp.headers["location"]


# ---------------------------------------------------------------------------
# Sign-out
# ---------------------------------------------------------------------------


class TestSignOut:
    def test_sign_out_destroys_session_and_clears_cookie(self, auth_client) -> None:
        _, token = _sign_in(auth_client)
        client = auth_client.client
        client.cookies.set(COOKIE, token)

        resp = client.post("/auth", params={"action": "signout"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Signed out successfully"}
        cleared = next(h for h in _set_cookie_headers(resp) if h.startswith(f"{COOKIE}="))
        assert "max-age=0" in cleared.lower()
        assert auth_client.service.session_store.get_valid_session(token) is None

    def test_sign_out_without_cookie(self, auth_client) -> None:
        auth_client.client.cookies.clear()
        resp = auth_client.client.post("/auth", params={"action": "signout"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

    def test_sign_out_with_unknown_session(self, auth_client) -> None:
        auth_client.client.cookies.set(COOKIE, "not-a-real-session")
        resp = auth_client.client.post("/auth", params={"action": "signout"})
        assert resp.status_code == 200
        assert any(h.startswith(f"{COOKIE}=") for h in _set_cookie_headers(resp))

    def test_sign_out_survives_store_failure(self, auth_client, monkeypatch) -> None:
        def explode(token):
            raise RuntimeError("database went away")

        monkeypatch.setattr(auth_client.service, "sign_out", explode)
        auth_client.client.cookies.set(COOKIE, "whatever")
        resp = auth_client.client.post("/auth", params={"action": "signout"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert any(h.startswith(f"{COOKIE}=") for h in _set_cookie_headers(resp))


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TestStatus:
    def test_no_cookie(self, auth_client) -> None:
        auth_client.client.cookies.clear()
        resp = auth_client.client.get("/auth", params={"action": "status"})
        assert resp.status_code == 200
        assert resp.json() == {"isAuthenticated": False, "user": None}

    def test_unknown_session(self, auth_client) -> None:
        auth_client.client.cookies.set(COOKIE, "stale-or-forged")
        resp = auth_client.client.get("/auth", params={"action": "status"})
        assert resp.json() == {"isAuthenticated": False, "user": None}

    def test_authenticated_payload(self, auth_client) -> None:
        _, token = _sign_in(auth_client)
        auth_client.client.cookies.set(COOKIE, token)
        resp = auth_client.client.get("/auth", params={"action": "status"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json() == {
            "isAuthenticated": True,
            "user": {"uuid": "google-123", "username": "Ada Lovelace", "email": "ada@example.com"},
            "trial": {"used": 0, "remaining": 999, "max": 999},
            "plan_type": "unlimited",
        }

    def test_expired_session_reports_false(self, auth_client) -> None:
        service = auth_client.service
        user = service.user_store.upsert_user("google-123", "Ada", "ada@example.com")
        service.session_store.create_session(user.id, "expired-tok", datetime.now(timezone.utc) - timedelta(seconds=1))
        auth_client.client.cookies.set(COOKIE, "expired-tok")
        resp = auth_client.client.get("/auth", params={"action": "status"})
        assert resp.json() == {"isAuthenticated": False, "user": None}

    def test_signed_out_session_reports_false(self, auth_client) -> None:
        _, token = _sign_in(auth_client)
        client = auth_client.client
        client.cookies.set(COOKIE, token)
        client.post("/auth", params={"action": "signout"})
        client.cookies.set(COOKIE, token)
        resp = client.get("/auth", params={"action": "status"})
        assert resp.json()["isAuthenticated"] is False

    def test_lookup_failure_downgrades_to_false(self, auth_client, monkeypatch) -> None:
        def explode(token):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(auth_client.service, "get_authenticated_user", explode)
        auth_client.client.cookies.set(COOKIE, "anything")
        resp = auth_client.client.get("/auth", params={"action": "status"})
        assert resp.status_code == 200
        assert resp.json() == {"isAuthenticated": False, "user": None, "error": "Session lookup failed"}
