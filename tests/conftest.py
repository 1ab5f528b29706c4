# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures — shared across all tests
# ─────────────────────────────────────────────────────────────────────────────
# No network: outbound httpx calls go through respx, the credential chain is
# a stub strategy, and time comes from a FakeClock.
# ─────────────────────────────────────────────────────────────────────────────

import os
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from streetscene.config import Settings
from streetscene.main import create_app
from streetscene.pipeline.description import DescriptionStage
from streetscene.pipeline.encoding import decode_base64
from streetscene.pipeline.synthesis import ImageSynthesisStage
from streetscene.pipeline.types import AccessToken
from streetscene.services.cooldown import CooldownLimiter
from streetscene.services.credentials import CredentialResolver
from streetscene.services.metrics import PipelineMetrics
from streetscene.services.pipeline import PipelineOrchestrator
from streetscene.store.quota_store import InMemoryQuotaStore

TEST_TOKEN = "ya29.test-token-do-not-log"
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"street-view-still" + b"\xff\xd9"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"synthesized"

# slowapi keeps counters for the whole session; keep the per-IP limit out of the way.
os.environ["RATE_LIMIT"] = "10000/minute"


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now += timedelta(minutes=minutes, seconds=seconds)


class StubStrategy:
    """Credential strategy returning a fixed token (or None)."""

    def __init__(self, value: str | None = TEST_TOKEN, name: str = "stub") -> None:
        self.name = name
        self._value = value
        self.calls = 0

    async def fetch(self) -> AccessToken | None:
        self.calls += 1
        if self._value is None:
            return None
        return AccessToken(
            value=self._value,
            expires_at=datetime(2026, 10, 18, 13, 0, tzinfo=UTC),
            source=self.name,
        )


def gemini_payload(text: str = "A wide boulevard runs from the bottom left toward the center.") -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def imagen_payload(data: bytes = PNG_BYTES, prompt: str | None = "enhanced prompt") -> dict:
    import base64

    prediction = {"mimeType": "image/png", "bytesBase64Encoded": base64.b64encode(data).decode()}
    if prompt is not None:
        prediction["prompt"] = prompt
    return {"predictions": [prediction]}


def parse_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI from a response body into (mime_type, bytes)."""
    if not uri.startswith("data:") or ";base64," not in uri:
        raise ValueError("Not a base64 data URI")
    header, payload = uri[len("data:") :].split(";base64,", 1)
    return header, decode_base64(payload)


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing — memory quota store, fake keys."""
    return Settings(
        maps_api_key="test-maps-key",
        quota_db_path="",
        log_json=False,
        log_level="DEBUG",
        cooldown_minutes=10,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub_strategy() -> StubStrategy:
    return StubStrategy()


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore(ttl_seconds=600)


@pytest.fixture
def cooldown(quota_store: InMemoryQuotaStore, clock: FakeClock) -> CooldownLimiter:
    return CooldownLimiter(quota_store, window_minutes=10, clock=clock)


@pytest.fixture
def mock_vertex(test_settings: Settings):
    """respx router with Street View, Gemini and Imagen routes pre-registered.

    Routes answer with a valid still, description and image by default;
    tests override `.mock(...)` on the named route to inject failures.
    """
    with respx.mock(assert_all_called=False) as router:
        router.get(url__startswith=test_settings.streetview_url, name="streetview").mock(
            return_value=httpx.Response(200, content=JPEG_BYTES, headers={"Content-Type": "image/jpeg"})
        )
        router.post(
            f"{test_settings.vertex_base_url}/{test_settings.gemini_model_id}:generateContent",
            name="gemini",
        ).mock(return_value=httpx.Response(200, json=gemini_payload()))
        router.post(
            f"{test_settings.vertex_base_url}/{test_settings.imagen_model_id}:predict",
            name="imagen",
        ).mock(return_value=httpx.Response(200, json=imagen_payload()))
        yield router


@pytest.fixture
def orchestrator(
    test_settings: Settings,
    cooldown: CooldownLimiter,
    stub_strategy: StubStrategy,
) -> PipelineOrchestrator:
    """Real stages over a plain httpx client; pair with mock_vertex."""
    http = httpx.AsyncClient()
    return PipelineOrchestrator(
        cooldown=cooldown,
        credentials=CredentialResolver([stub_strategy]),
        description_stage=DescriptionStage(http, test_settings),
        synthesis_stage=ImageSynthesisStage(http, test_settings),
        metrics=PipelineMetrics(),
    )


@pytest.fixture
def client(
    test_settings: Settings,
    quota_store: InMemoryQuotaStore,
    orchestrator: PipelineOrchestrator,
    mock_vertex: respx.MockRouter,
) -> TestClient:
    """FastAPI TestClient with test doubles on app.state.

    TestClient is not entered as a context manager, so the lifespan does not
    run; app.state is populated here instead.
    """
    from streetscene.config import get_settings

    get_settings.cache_clear()

    env_overrides = {
        "LOG_JSON": "false",
        "LOG_LEVEL": "DEBUG",
        "ALLOWED_ORIGINS": "*",
    }
    for k, v in env_overrides.items():
        os.environ[k] = v

    try:
        app = create_app()
        client = TestClient(app, raise_server_exceptions=False)

        app.state.settings = test_settings
        app.state.quota_store = quota_store
        app.state.credential_resolver = orchestrator.credentials
        app.state.metrics = orchestrator.metrics
        app.state.pipeline_orchestrator = orchestrator

        return client
    finally:
        for k in env_overrides:
            os.environ.pop(k, None)
        get_settings.cache_clear()
