# ─────────────────────────────────────────────────────────────────────────────
# Health Check Routes — liveness, readiness, metrics
# ─────────────────────────────────────────────────────────────────────────────
#   /health        → Liveness probe. Near-zero cost, always 200.
#   /health/ready  → Readiness probe. Quota store connected + credential
#                    chain configured; 503 otherwise.
#   /metrics       → Pipeline outcome counters and latency (JSON).
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from streetscene.dependencies import get_credential_resolver, get_metrics, get_quota_store
from streetscene.schemas import LivenessResponse, ReadinessResponse
from streetscene.services.credentials import CredentialResolver
from streetscene.services.metrics import PipelineMetrics
from streetscene.store.quota_store import QuotaStore

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe — is the process alive? No deps, no I/O."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(
    store: QuotaStore = Depends(get_quota_store),
    credentials: CredentialResolver = Depends(get_credential_resolver),
) -> JSONResponse:
    """Readiness probe. Does not fetch a token: that would cost a metadata
    round-trip (or a gcloud subprocess) on every probe."""
    strategies = credentials.strategy_names
    ready = store.is_connected and bool(strategies)

    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        quota_store_connected=store.is_connected,
        credential_strategies=strategies,
    )
    return JSONResponse(
        status_code=200 if ready else 503,
        content=response.model_dump(),
    )


@router.get("/metrics")
async def metrics_endpoint(
    metrics: PipelineMetrics = Depends(get_metrics),
) -> dict[str, Any]:
    """Pipeline metrics — run counts, stage outcomes, latency."""
    return metrics.to_dict()
