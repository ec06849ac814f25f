"""End-to-end tests through the demo app: login redirect, callback, session, logout."""
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from oidc_client.flow_store import MemoryLoginStore
from oidc_client.guard import ProtectedPaths
from oidc_client.main import build_app
from oidc_client.openid import OpenIDConnect


class FakeTokenEndpoint:
    """Token endpoint double: answers with an ID token carrying the nonce it is told to use."""

    def __init__(self, make_id_token):
        self.make_id_token = make_id_token
        self.nonce = None
        self.status_code = 200
        self.error = None
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "invalid_grant"})
        return httpx.Response(
            200,
            json={
                "access_token": "at-123",
                "token_type": "Bearer",
                "expires_in": 300,
                "id_token": self.make_id_token(nonce=self.nonce),
            },
        )


@pytest.fixture
def token_endpoint(make_id_token):
    return FakeTokenEndpoint(make_id_token)


def _make_client(provider, client_config, token_endpoint, **kwargs) -> TestClient:
    oidc = OpenIDConnect(
        provider,
        client_config,
        ProtectedPaths(["/dashboard"]),
        secret="test-secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint)),
        **kwargs,
    )
    return TestClient(build_app(oidc))


@pytest.fixture
def client(provider, client_config, token_endpoint):
    return _make_client(provider, client_config, token_endpoint)


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def _start_login(client, token_endpoint, path="/dashboard") -> dict[str, str]:
    r = client.get(path, follow_redirects=False)
    assert r.status_code == 302
    q = _query(r.headers["location"])
    token_endpoint.nonce = q["nonce"]
    return q


def _login(client, token_endpoint) -> None:
    q = _start_login(client, token_endpoint)
    r = client.get("/auth", params={"code": "auth-code", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 302


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "oidc_client"


def test_public_route_needs_no_session(client):
    r = client.get("/public")
    assert r.status_code == 200
    assert r.json()["access"] == "anonymous"


def test_protected_route_redirects_to_provider(client, provider, client_config):
    r = client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith(f"{provider.authorization_endpoint}?")
    q = _query(location)
    assert q["response_type"] == "code"
    assert q["client_id"] == client_config.client_id
    assert q["redirect_uri"] == client_config.redirect_uri
    assert "openid" in q["scope"].split()
    assert q["state"] and q["nonce"]
    assert q["code_challenge_method"] == "S256"
    assert client.cookies.get("oidc_login")


def test_protected_post_without_session_is_401(client):
    r = client.post("/dashboard", follow_redirects=False)
    assert r.status_code == 401
    assert r.json()["error"] == "login_required"


def test_auth_endpoint_without_params_starts_login(client, provider):
    r = client.get("/auth", params={"return_to": "https://evil.example/"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].startswith(provider.authorization_endpoint)


def test_full_login_then_dashboard(client, token_endpoint):
    q = _start_login(client, token_endpoint)
    r = client.get("/auth", params={"code": "auth-code", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/dashboard"
    assert client.cookies.get("oidc_session")
    assert not client.cookies.get("oidc_login")

    form = parse_qs(token_endpoint.requests[0].content.decode())
    assert form["code"] == ["auth-code"]
    assert form["code_verifier"][0]

    r = client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200
    assert "user-42" in r.text


def test_callback_state_mismatch_is_generic_401(client, token_endpoint):
    _start_login(client, token_endpoint)
    r = client.get("/auth", params={"code": "auth-code", "state": "forged"}, follow_redirects=False)
    assert r.status_code == 401
    assert "Please sign in again" in r.text
    assert "mismatch" not in r.text
    assert token_endpoint.requests == []
    assert not client.cookies.get("oidc_session")


def test_callback_expired_and_forged_look_the_same(client, token_endpoint, make_id_token, other_rsa_key):
    bodies = []
    for overrides in ({"exp": 1, "iat": 0}, {"key": other_rsa_key}):
        q = _start_login(client, token_endpoint)
        nonce = q["nonce"]
        token_endpoint.make_id_token = lambda nonce=nonce, o=overrides, **_: make_id_token(nonce=nonce, **o)
        r = client.get("/auth", params={"code": "c", "state": q["state"]}, follow_redirects=False)
        assert r.status_code == 401
        bodies.append(r.text)
    assert bodies[0] == bodies[1]


def test_callback_without_login_cookie_rejected(client):
    r = client.get("/auth", params={"code": "auth-code", "state": "some-state"}, follow_redirects=False)
    assert r.status_code == 401


def test_callback_replay_rejected(client, token_endpoint):
    q = _start_login(client, token_endpoint)
    params = {"code": "auth-code", "state": q["state"]}
    assert client.get("/auth", params=params, follow_redirects=False).status_code == 302
    assert client.get("/auth", params=params, follow_redirects=False).status_code == 401


def test_callback_replayed_with_captured_cookie_rejected(client, token_endpoint):
    q = _start_login(client, token_endpoint)
    login_cookie = client.cookies.get("oidc_login")
    params = {"code": "auth-code", "state": q["state"]}
    assert client.get("/auth", params=params, follow_redirects=False).status_code == 302
    client.cookies.set("oidc_login", login_cookie)
    r = client.get("/auth", params=params, follow_redirects=False)
    assert r.status_code == 401
    assert len(token_endpoint.requests) == 1


def test_provider_error_shown(client, token_endpoint):
    q = _start_login(client, token_endpoint)
    r = client.get(
        "/auth",
        params={"state": q["state"], "error": "access_denied", "error_description": "User <b>denied</b>"},
        follow_redirects=False,
    )
    assert r.status_code == 400
    assert "User &lt;b&gt;denied&lt;/b&gt;" in r.text
    assert token_endpoint.requests == []


def test_token_endpoint_down_is_502(client, token_endpoint):
    q = _start_login(client, token_endpoint)
    token_endpoint.error = httpx.ConnectError("connection refused")
    r = client.get("/auth", params={"code": "c", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 502
    assert "try again" in r.text
    assert "return_to=%2Fdashboard" in r.text


def test_token_endpoint_rejects_code_is_400(client, token_endpoint):
    q = _start_login(client, token_endpoint)
    token_endpoint.status_code = 400
    r = client.get("/auth", params={"code": "c", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 400
    assert "invalid_grant" in r.text


def test_logout_clears_session_and_redirects(client, token_endpoint, provider, client_config):
    _login(client, token_endpoint)
    assert client.cookies.get("oidc_session")

    r = client.get("/logout", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith(f"{provider.end_session_endpoint}?")
    q = _query(location)
    assert q["post_logout_redirect_uri"] == client_config.post_logout_redirect_uri
    assert q["id_token_hint"]
    assert not client.cookies.get("oidc_session")

    r = client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302


def test_logout_accepts_post(client, token_endpoint, provider):
    _login(client, token_endpoint)
    r = client.post("/logout", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].startswith(f"{provider.end_session_endpoint}?")
    assert not client.cookies.get("oidc_session")


def test_memory_login_store(provider, client_config, token_endpoint):
    store = MemoryLoginStore(secure=False)
    client = _make_client(provider, client_config, token_endpoint, login_store=store)
    q = _start_login(client, token_endpoint)
    assert client.cookies.get("oidc_login") == q["state"]
    assert len(store) == 1

    params = {"code": "auth-code", "state": q["state"]}
    assert client.get("/auth", params=params, follow_redirects=False).status_code == 302
    assert len(store) == 0
    client.cookies.set("oidc_login", q["state"])
    assert client.get("/auth", params=params, follow_redirects=False).status_code == 401
