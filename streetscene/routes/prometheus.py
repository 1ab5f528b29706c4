# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Bridges PipelineMetrics → prometheus-client gauges.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from streetscene.dependencies import get_metrics, get_quota_store
from streetscene.services.metrics import PipelineMetrics
from streetscene.store.quota_store import QuotaStore

router = APIRouter()

# Custom registry to avoid default process metrics
_registry = CollectorRegistry()

_runs_total = Gauge(
    "streetscene_runs_total",
    "Pipeline runs that passed the cooldown gate",
    ["operation"],
    registry=_registry,
)

_stage_outcomes = Gauge(
    "streetscene_stage_outcomes",
    "Stage outcomes since start",
    ["stage", "outcome"],
    registry=_registry,
)

_rejections = Gauge(
    "streetscene_rejections",
    "Runs rejected before any model call",
    ["reason"],
    registry=_registry,
)

_latency_ms = Gauge(
    "streetscene_latency_ms",
    "Run latency percentiles in milliseconds",
    ["quantile"],
    registry=_registry,
)

_quota_store_connected = Gauge(
    "streetscene_quota_store_connected",
    "Whether the quota store is connected (1) or not (0)",
    registry=_registry,
)


def _sync_metrics(metrics: PipelineMetrics, store: QuotaStore) -> None:
    """Sync PipelineMetrics data into Prometheus gauges."""
    data = metrics.to_dict()

    for operation, count in data["runs_by_operation"].items():
        _runs_total.labels(operation=operation).set(count)

    _stage_outcomes.labels(stage="description", outcome="ok").set(data["descriptions_ok"])
    _stage_outcomes.labels(stage="description", outcome="degraded").set(
        data["descriptions_degraded"]
    )
    _stage_outcomes.labels(stage="source_image", outcome="failed").set(
        data["source_image_failures"]
    )
    _stage_outcomes.labels(stage="synthesis", outcome="ok").set(data["syntheses_ok"])
    _stage_outcomes.labels(stage="synthesis", outcome="failed").set(data["syntheses_failed"])

    _rejections.labels(reason="cooldown").set(data["cooldown_rejections"])
    _rejections.labels(reason="credential").set(data["credential_failures"])

    _latency_ms.labels(quantile="0.5").set(data["latency_p50_ms"])
    _latency_ms.labels(quantile="0.95").set(data["latency_p95_ms"])

    _quota_store_connected.set(1 if store.is_connected else 0)


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: PipelineMetrics = Depends(get_metrics),
    store: QuotaStore = Depends(get_quota_store),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    _sync_metrics(metrics, store)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
