# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env")

    # ── Vertex AI ────────────────────────────────────────────────────────────
    gcp_project_id: str = "onyx-robot-451205-n3"
    gcp_location: str = "us-central1"
    vertex_api_endpoint: str = "us-central1-aiplatform.googleapis.com"
    gemini_model_id: str = "gemini-2.0-flash-001"
    imagen_model_id: str = "imagen-3.0-generate-002"

    # ── Street View ──────────────────────────────────────────────────────────
    streetview_url: str = "https://maps.googleapis.com/maps/api/streetview"
    streetview_size: str = "1024x576"  # 16:9, matches the synthesized aspect ratio
    # SecretStr keeps the key out of logs, repr(), and model_dump().
    maps_api_key: SecretStr = SecretStr("")

    # ── Credentials ──────────────────────────────────────────────────────────
    metadata_token_url: str = (
        "http://metadata.google.internal/computeMetadata/v1/instance/service-accounts/default/token"
    )
    gcloud_command: str = "gcloud auth print-access-token"

    # ── Timeouts (seconds) ───────────────────────────────────────────────────
    metadata_timeout_seconds: float = 2.0
    gcloud_timeout_seconds: float = 10.0
    streetview_timeout_seconds: float = 15.0
    gemini_timeout_seconds: float = 60.0
    imagen_timeout_seconds: float = 90.0

    # ── Cooldown ─────────────────────────────────────────────────────────────
    cooldown_minutes: int = 10
    # Empty = in-memory store (single instance / dev). Otherwise a SQLite file path.
    quota_db_path: str = ""
    # In-memory store only: live identities held before the oldest is evicted.
    quota_memory_max_entries: int = 100_000

    # Comma-separated service keys (several during rotation). Empty = auth disabled.
    api_key: SecretStr = SecretStr("")
    # Header set by the upstream session provider carrying the caller identity.
    identity_header: str = "X-User-Id"

    # Comma-separated origins for CORS. Empty string = deny all cross-origin requests.
    allowed_origins: str = ""

    # HTTP-layer rate limit per client IP (slowapi format). The cooldown gate
    # protects model cost; this one only guards against request floods.
    rate_limit: str = "60/minute"

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True  # JSON logs for Cloud Logging

    @property
    def vertex_base_url(self) -> str:
        """Publisher-model base URL shared by the Gemini and Imagen calls."""
        return (
            f"https://{self.vertex_api_endpoint}/v1/projects/{self.gcp_project_id}"
            f"/locations/{self.gcp_location}/publishers/google/models"
        )

    @property
    def api_keys(self) -> list[str]:
        return _split_csv(self.api_key.get_secret_value())

    @property
    def cors_origins(self) -> list[str]:
        return _split_csv(self.allowed_origins)


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
