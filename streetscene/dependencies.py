# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from streetscene.services.credentials import CredentialResolver
from streetscene.services.metrics import PipelineMetrics
from streetscene.services.pipeline import PipelineOrchestrator
from streetscene.store.quota_store import QuotaStore


def get_quota_store(request: Request) -> QuotaStore:
    """Inject the QuotaStore into endpoints via Depends()."""
    return request.app.state.quota_store  # type: ignore[no-any-return]


def get_credential_resolver(request: Request) -> CredentialResolver:
    """Inject the CredentialResolver into endpoints via Depends()."""
    return request.app.state.credential_resolver  # type: ignore[no-any-return]


def get_metrics(request: Request) -> PipelineMetrics:
    """Inject PipelineMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_pipeline_orchestrator(request: Request) -> PipelineOrchestrator:
    """Inject PipelineOrchestrator into endpoints via Depends()."""
    return request.app.state.pipeline_orchestrator  # type: ignore[no-any-return]
