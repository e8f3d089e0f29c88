import json
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.oauth_session_store import (
    OAuthSession,
    clear_oauth_session_store_cache,
    create_oauth_session_store,
)
from app.services.security_utils import create_signed_token, is_valid_session_id


class _MockResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._payload = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


@pytest.fixture(autouse=True)
def reset_oauth(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OAUTH_SESSIONS_STORE", "memory")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "google-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "google-client-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", "http://testserver/api/auth/google/callback")
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:5173,https://dashboard.example.com")
    monkeypatch.setenv("FRONTEND_BASE_URL", "")

    clear_oauth_session_store_cache()
    get_settings.cache_clear()
    yield
    clear_oauth_session_store_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _state_for(origin: str | None = None) -> str:
    claims: dict[str, object] = {"type": "google_oauth_state"}
    if origin:
        claims["origin"] = origin
    token = create_signed_token(
        claims=claims,
        secret_key=get_settings().auth_secret_key,
        ttl_minutes=10,
    )
    return token


def test_google_auth_url_requests_offline_workspace_scopes(client: TestClient) -> None:
    response = client.post(
        "/api/auth/google/url",
        json={"origin": "https://dashboard.example.com"},
    )

    assert response.status_code == 200
    parsed = urlparse(response.json()["url"])
    query = parse_qs(parsed.query)
    assert parsed.netloc == "accounts.google.com"
    assert query["client_id"] == ["google-client-id"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert "https://www.googleapis.com/auth/calendar" in query["scope"][0].split(" ")
    assert query["state"][0]


def test_google_auth_url_requires_configuration(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "")
    get_settings.cache_clear()

    response = client.post("/api/auth/google/url", json={})

    assert response.status_code == 503


def test_google_callback_stores_tokens_and_redirects_with_session(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=15):  # type: ignore[no-untyped-def]
        assert req.full_url == "https://oauth2.googleapis.com/token"
        return _MockResponse(
            {
                "access_token": "access-token",
                "refresh_token": "refresh-token",
                "expires_in": 3599,
            },
        )

    monkeypatch.setattr("app.services.google_oauth_service.urlopen", fake_urlopen)

    response = client.get(
        "/api/auth/google/callback",
        params={"code": "auth-code", "state": _state_for("https://dashboard.example.com")},
        follow_redirects=False,
    )

    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}" == "https://dashboard.example.com"
    query = parse_qs(location.query)
    assert query["auth"] == ["success"]
    session_id = query["userId"][0]
    assert is_valid_session_id(session_id)

    stored = create_oauth_session_store(get_settings()).get_session(session_id)
    assert stored is not None
    assert stored.access_token == "access-token"
    assert stored.refresh_token == "refresh-token"


def test_google_callback_ignores_unlisted_origin(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "app.services.google_oauth_service.urlopen",
        lambda req, timeout=15: _MockResponse({"access_token": "access-token"}),
    )

    response = client.get(
        "/api/auth/google/callback",
        params={"code": "auth-code", "state": _state_for("https://evil.example.com")},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"].startswith("http://localhost:5173?")


def test_google_callback_redirects_failure_on_provider_error(client: TestClient) -> None:
    response = client.get(
        "/api/auth/google/callback",
        params={"error": "access_denied", "state": _state_for("https://dashboard.example.com")},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "https://dashboard.example.com?auth=failed"


def test_google_callback_rejects_invalid_state(client: TestClient) -> None:
    response = client.get(
        "/api/auth/google/callback",
        params={"code": "auth-code", "state": "forged.state"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "http://localhost:5173?auth=failed"


def test_google_callback_redirects_failure_when_exchange_fails(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "app.services.google_oauth_service.urlopen",
        lambda req, timeout=15: _MockResponse({"error": "invalid_grant"}),
    )

    response = client.get(
        "/api/auth/google/callback",
        params={"code": "auth-code", "state": _state_for()},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"].endswith("?auth=failed")


def test_revoke_session_requires_valid_session_header(client: TestClient) -> None:
    response = client.delete("/api/auth/google/session", headers={"x-user-id": "nope"})

    assert response.status_code == 401


def test_revoke_session_drops_stored_tokens(client: TestClient) -> None:
    store = create_oauth_session_store(get_settings())
    session_id = "session_" + "cd" * 32
    store.save_session(
        OAuthSession(
            session_id=session_id,
            access_token="access-token",
            refresh_token="refresh-token",
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        ),
    )

    response = client.delete("/api/auth/google/session", headers={"x-user-id": session_id})

    assert response.status_code == 204
    assert store.get_session(session_id) is None
