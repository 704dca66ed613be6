"""Tests for the HTTP surface: initiate, callback redirects, popup JSON variant, connections, audit."""
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from social_connect.config import CREDENTIALS_PATH, FRONTEND_URL
from social_connect.main import app, get_limiter, get_orchestrator
from social_connect.orchestrator import FlowOrchestrator
from social_connect.rate_limit import SlidingWindowLimiter
from social_connect.store import CredentialStore, Provider

from conftest import StubAdapter, make_config

client = TestClient(app)

TWITTER_TOKEN = {"access_token": "tw-at", "refresh_token": "tw-rt", "expires_in": 7200, "token_type": "bearer"}
TWITTER_ME = {"data": {"id": "42", "name": "Ada", "username": "ada"}}
LINKEDIN_TOKEN = {"access_token": "li-at", "expires_in": 5184000}
LINKEDIN_ME = {"sub": "li-7", "name": "Ada Lovelace", "email": "ada@example.com"}


class MockResponse:
    def __init__(self, status_code=200, body=None, text="", headers=None):
        self.status_code = status_code
        self._body = body
        self.text = text
        self.headers = headers or {}

    def json(self):
        return self._body


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def _state_of(url):
    return parse_qs(urlparse(url).query)["state"][0]


def _redirect_params(response):
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(f"{FRONTEND_URL}{CREDENTIALS_PATH}?")
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


def _start(provider):
    r = client.get(f"/auth/{provider}")
    assert r.status_code == 200
    return _state_of(r.json()["url"])


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "social_connect"


def test_start_twitter_returns_url():
    r = client.get("/auth/twitter")
    assert r.status_code == 200
    url = r.json()["url"]
    q = parse_qs(urlparse(url).query)
    assert url.startswith("https://twitter.com/i/oauth2/authorize?")
    assert q["client_id"] == ["tw-client-id"]
    assert q["code_challenge_method"] == ["S256"]
    assert app.state.services.store.has_pending_flow(q["state"][0])


def test_start_linkedin_returns_url():
    r = client.get("/auth/linkedin")
    q = parse_qs(urlparse(r.json()["url"]).query)
    assert q["scope"] == ["openid profile email"]
    assert "code_challenge" not in q


def test_start_unknown_provider():
    r = client.get("/auth/myspace")
    assert r.status_code == 404


def test_start_unconfigured_provider_returns_500():
    adapter = StubAdapter(Provider.TWITTER, config=make_config("twitter", client_id="", client_secret=""))
    orch = FlowOrchestrator(CredentialStore(600, 3600), {Provider.TWITTER: adapter})
    app.dependency_overrides[get_orchestrator] = lambda: orch
    r = client.get("/auth/twitter")
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Failed to initiate twitter OAuth"
    assert "not configured" in body["details"]


def test_start_rate_limited():
    limiter = SlidingWindowLimiter(limit=1)
    app.dependency_overrides[get_limiter] = lambda: limiter
    assert client.get("/auth/twitter").status_code == 200
    r = client.get("/auth/twitter")
    assert r.status_code == 429
    assert int(r.headers["retry-after"]) >= 1


def test_twitter_callback_redirects_with_credentials():
    state = _start("twitter")
    with patch("social_connect.providers.base.httpx.post", return_value=MockResponse(body=TWITTER_TOKEN)) as post, patch(
        "social_connect.providers.base.httpx.get", return_value=MockResponse(body=TWITTER_ME)
    ):
        r = client.get("/auth/twitter/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    params = _redirect_params(r)
    assert params["twitter_access_token"] == "tw-at"
    assert params["twitter_refresh_token"] == "tw-rt"
    assert params["twitter_username"] == "ada"
    assert params["twitter_user_id"] == "42"
    assert "twitter_expires_at" in params
    assert "error" not in params
    assert post.call_args[1]["data"]["code_verifier"] != state
    assert app.state.services.orchestrator.get_credential("twitter", "42").access_token == "tw-at"


def test_linkedin_callback_includes_email():
    state = _start("linkedin")
    with patch("social_connect.providers.base.httpx.post", return_value=MockResponse(body=LINKEDIN_TOKEN)), patch(
        "social_connect.providers.base.httpx.get", return_value=MockResponse(body=LINKEDIN_ME)
    ):
        r = client.get("/auth/linkedin/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    params = _redirect_params(r)
    assert params["linkedin_email"] == "ada@example.com"
    assert params["linkedin_username"] == "Ada Lovelace"
    assert "linkedin_refresh_token" not in params


def test_callback_unknown_state_redirects_with_error():
    with patch("social_connect.providers.base.httpx.post") as post:
        r = client.get("/auth/twitter/callback", params={"code": "abc", "state": "forged"}, follow_redirects=False)
    params = _redirect_params(r)
    assert "Invalid or expired state" in params["error"]
    post.assert_not_called()


def test_callback_state_from_other_provider_rejected():
    state = _start("twitter")
    with patch("social_connect.providers.base.httpx.post") as post:
        r = client.get("/auth/linkedin/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert "Invalid or expired state" in _redirect_params(r)["error"]
    post.assert_not_called()


def test_callback_denied_consumes_state():
    state = _start("twitter")
    r = client.get(
        "/auth/twitter/callback",
        params={"error": "access_denied", "error_description": "User denied", "state": state},
        follow_redirects=False,
    )
    assert _redirect_params(r)["error"] == "access_denied: User denied"
    assert not app.state.services.store.has_pending_flow(state)


def test_callback_missing_parameters():
    r = client.get("/auth/twitter/callback", follow_redirects=False)
    assert _redirect_params(r)["error"] == "Missing required parameters."


def test_callback_unknown_provider_redirects_with_error():
    r = client.get("/auth/myspace/callback", params={"code": "abc", "state": "s"}, follow_redirects=False)
    assert _redirect_params(r)["error"] == "Unsupported provider."


def test_callback_unknown_provider_json_variant():
    r = client.get("/auth/myspace/callback", params={"code": "abc", "state": "s", "response_mode": "json"})
    assert r.status_code == 404
    assert r.json() == {"error": "Unsupported provider."}


def test_callback_upstream_failure_is_sanitized():
    state = _start("twitter")
    body = '{"error":"invalid_client","client_secret":"tw-client-secret"}'
    with patch("social_connect.providers.base.httpx.post", return_value=MockResponse(status_code=401, text=body)):
        r = client.get("/auth/twitter/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    location = r.headers["location"]
    assert "tw-client-secret" not in location
    assert "invalid_client" not in location
    assert _redirect_params(r)["error"] == "Failed to complete Twitter authentication."


def test_callback_json_variant_success():
    state = _start("twitter")
    with patch("social_connect.providers.base.httpx.post", return_value=MockResponse(body=TWITTER_TOKEN)), patch(
        "social_connect.providers.base.httpx.get", return_value=MockResponse(body=TWITTER_ME)
    ):
        r = client.get(
            "/auth/twitter/callback",
            params={"code": "abc", "state": state},
            headers={"accept": "application/json"},
        )
    assert r.status_code == 200
    assert r.json()["twitter_access_token"] == "tw-at"


def test_callback_json_variant_invalid_state():
    r = client.get("/auth/twitter/callback", params={"code": "abc", "state": "nope", "response_mode": "json"})
    assert r.status_code == 400
    assert "Invalid or expired state" in r.json()["error"]


def test_callback_json_variant_rate_limited():
    state = _start("linkedin")
    resp = MockResponse(status_code=429, text="slow down", headers={"retry-after": "30"})
    with patch("social_connect.providers.base.httpx.post", return_value=resp):
        r = client.get(
            "/auth/linkedin/callback",
            params={"code": "abc", "state": state, "response_mode": "json"},
        )
    assert r.status_code == 429
    assert r.headers["retry-after"] == "30"
    assert "slow down" not in r.text


def test_callback_network_failure_json():
    state = _start("twitter")
    with patch("social_connect.providers.base.httpx.post", side_effect=httpx.ConnectError("refused")):
        r = client.get("/auth/twitter/callback", params={"code": "abc", "state": state, "response_mode": "json"})
    assert r.status_code == 502
    assert "Could not reach Twitter" in r.json()["error"]


def test_config_check_never_returns_secret():
    r = client.get("/auth/twitter/test")
    assert r.status_code == 200
    body = r.json()
    assert body["credentials"]["client_secret_present"] is True
    assert body["credentials"]["client_id_prefix"] == "tw-c..."
    assert "tw-client-secret" not in r.text
    assert body["callback_url"].endswith("/auth/twitter/callback")


def _link_twitter():
    state = _start("twitter")
    with patch("social_connect.providers.base.httpx.post", return_value=MockResponse(body=TWITTER_TOKEN)), patch(
        "social_connect.providers.base.httpx.get", return_value=MockResponse(body=TWITTER_ME)
    ):
        client.get("/auth/twitter/callback", params={"code": "abc", "state": state}, follow_redirects=False)


def test_connection_status_refresh_and_disconnect():
    _link_twitter()
    r = client.get("/connections/twitter/42")
    assert r.status_code == 200
    assert r.json()["connected"] is True
    assert "tw-at" not in r.text

    refreshed = {"access_token": "tw-at-2", "refresh_token": "tw-rt-2", "expires_in": 7200}
    with patch("social_connect.providers.base.httpx.post", return_value=MockResponse(body=refreshed)):
        r = client.post("/connections/twitter/42/refresh")
    assert r.status_code == 200
    assert app.state.services.orchestrator.get_credential("twitter", "42").access_token == "tw-at-2"

    r = client.delete("/connections/twitter/42")
    assert r.json() == {"disconnected": True}
    assert client.get("/connections/twitter/42").status_code == 404


def test_refresh_unknown_connection():
    r = client.post("/connections/linkedin/nobody/refresh")
    assert r.status_code == 404


def test_audit_lists_rejections():
    client.get("/auth/twitter/callback", params={"code": "abc", "state": "forged-again"}, follow_redirects=False)
    r = client.get("/audit", params={"event_type": "state_rejected"})
    assert r.status_code == 200
    events = r.json()
    assert events
    assert events[0]["outcome"] == "fail"
    assert "forged-again" not in r.text
