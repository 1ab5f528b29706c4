# ─────────────────────────────────────────────────────────────────────────────
# Tests — API Key Authentication Middleware and caller identity
# ─────────────────────────────────────────────────────────────────────────────


import os

import pytest
from fastapi.testclient import TestClient

from streetscene.config import Settings
from streetscene.main import create_app

# ── Helpers ──────────────────────────────────────────────────────────────────

_TEST_API_KEY = "test-secret-key-2026"
_ORIGIN = "https://streetscene.example"
_EIFFEL = {"latitude": 48.8579, "longitude": 2.2949, "heading": 90}


def _make_app(orchestrator, quota_store, api_key: str = "") -> TestClient:
    """Build a test client with the given API key setting.

    When api_key is empty, auth is disabled (default for dev).
    """
    # Clear the lru_cache so each test can inject different settings
    from streetscene.config import get_settings

    get_settings.cache_clear()

    env_overrides = {
        "LOG_JSON": "false",
        "LOG_LEVEL": "DEBUG",
        "ALLOWED_ORIGINS": _ORIGIN,
    }
    if api_key:
        env_overrides["API_KEY"] = api_key

    for k, v in env_overrides.items():
        os.environ[k] = v

    try:
        app = create_app()
        client = TestClient(app, raise_server_exceptions=False)

        app.state.settings = Settings(maps_api_key="test-maps-key", api_key=api_key)
        app.state.quota_store = quota_store
        app.state.credential_resolver = orchestrator.credentials
        app.state.metrics = orchestrator.metrics
        app.state.pipeline_orchestrator = orchestrator

        return client
    finally:
        # Clean up env vars so tests don't leak state
        for k in env_overrides:
            os.environ.pop(k, None)
        get_settings.cache_clear()


# ── Auth Enabled ─────────────────────────────────────────────────────────────


class TestAuthEnabled:
    """When API_KEY is set, non-exempt requests require X-API-Key header."""

    @pytest.fixture(autouse=True)
    def _client(self, orchestrator, quota_store, mock_vertex):
        self.client = _make_app(orchestrator, quota_store, api_key=_TEST_API_KEY)

    def test_missing_key_returns_401(self):
        response = self.client.post("/describe-scene", json=_EIFFEL, headers={"X-User-Id": "u"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid or missing API key"

    def test_wrong_key_returns_401(self):
        response = self.client.post(
            "/describe-scene",
            json=_EIFFEL,
            headers={"X-API-Key": "wrong-key", "X-User-Id": "u"},
        )
        assert response.status_code == 401

    def test_correct_key_passes(self):
        response = self.client.post(
            "/describe-scene",
            json=_EIFFEL,
            headers={"X-API-Key": _TEST_API_KEY, "X-User-Id": "u"},
        )
        assert response.status_code == 200

    def test_correct_key_still_needs_identity(self):
        """The service key authenticates the caller app, not the end user."""
        response = self.client.post(
            "/describe-scene", json=_EIFFEL, headers={"X-API-Key": _TEST_API_KEY}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    @pytest.mark.parametrize("path", ["/health", "/health/ready", "/metrics", "/styles"])
    def test_health_and_catalogue_paths_exempt(self, path):
        assert self.client.get(path).status_code == 200

    def test_root_exempt(self):
        """Root path is exempt from auth."""
        response = self.client.get("/")
        # FastAPI returns 404 for root by default, but not 401
        assert response.status_code != 401

    def test_401_response_is_json(self):
        response = self.client.post("/synthesize-image", json={"description": "x"})
        assert response.headers["content-type"] == "application/json"
        assert "error" in response.json()

    def test_options_bypasses_auth(self):
        """OPTIONS (CORS preflight) must never require an API key.

        Browsers send OPTIONS without custom headers; rejecting the preflight
        blocks the real request entirely.
        """
        response = self.client.options(
            "/describe-scene",
            headers={
                "Origin": _ORIGIN,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type,X-API-Key,X-User-Id",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == _ORIGIN


# ── Auth Disabled ────────────────────────────────────────────────────────────


class TestAuthDisabled:
    """When API_KEY is empty, middleware is not applied."""

    @pytest.fixture(autouse=True)
    def _client(self, orchestrator, quota_store, mock_vertex):
        self.client = _make_app(orchestrator, quota_store, api_key="")

    def test_no_key_passes(self):
        response = self.client.post("/describe-scene", json=_EIFFEL, headers={"X-User-Id": "u"})
        assert response.status_code == 200

    def test_identity_header_still_required(self):
        response = self.client.post("/describe-scene", json=_EIFFEL)
        assert response.status_code == 401


# ── Key rotation ─────────────────────────────────────────────────────────────


class TestKeyRotation:
    @pytest.fixture(autouse=True)
    def _client(self, orchestrator, quota_store, mock_vertex):
        self.client = _make_app(orchestrator, quota_store, api_key="old-key, new-key")

    @pytest.mark.parametrize("key", ["old-key", "new-key"])
    def test_either_active_key_passes(self, key):
        response = self.client.post(
            "/describe-scene", json=_EIFFEL, headers={"X-API-Key": key, "X-User-Id": key}
        )
        assert response.status_code == 200

    def test_joined_value_is_not_a_key(self):
        response = self.client.post(
            "/describe-scene",
            json=_EIFFEL,
            headers={"X-API-Key": "old-key, new-key", "X-User-Id": "u"},
        )
        assert response.status_code == 401


class TestCommaSeparatedSettings:
    def test_api_keys_split_and_stripped(self):
        assert Settings(api_key=" a ,b,, ").api_keys == ["a", "b"]

    def test_empty_api_key_means_disabled(self):
        assert Settings(api_key="").api_keys == []

    def test_cors_origins(self):
        settings = Settings(allowed_origins="https://a.example, https://b.example")
        assert settings.cors_origins == ["https://a.example", "https://b.example"]
