# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn streetscene.main:create_app --factory --host 0.0.0.0 --port 8080

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from limits import parse as parse_limit
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from streetscene.auth import APIKeyMiddleware
from streetscene.config import Settings, get_settings
from streetscene.exceptions import register_exception_handlers
from streetscene.logging_config import configure_logging
from streetscene.middleware import RequestContextMiddleware
from streetscene.pipeline.description import DescriptionStage
from streetscene.pipeline.synthesis import ImageSynthesisStage
from streetscene.rate_limit import limiter
from streetscene.routes import health, scene, styles
from streetscene.routes import prometheus as prometheus_routes
from streetscene.services.cooldown import CooldownLimiter
from streetscene.services.credentials import CredentialResolver
from streetscene.services.metrics import PipelineMetrics
from streetscene.services.pipeline import PipelineOrchestrator
from streetscene.store.quota_store import create_quota_store

logger = structlog.get_logger(__name__)


def _parse_retry_after(rate_limit: str) -> str:
    """Window length in seconds of a slowapi limit string such as "60/minute"."""
    try:
        return str(parse_limit(rate_limit).get_expiry())
    except ValueError:
        return "60"


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a structured JSON 429 consistent with StreetSceneError responses."""
    settings = get_settings()
    retry_after = _parse_retry_after(settings.rate_limit)
    logger.warning(
        "rate_limit_exceeded",
        path=request.url.path,
        method=request.method,
        detail=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}", "type": "RateLimitExceeded"},
        headers={"Retry-After": retry_after},
    )


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str, service_name: str = "streetscene") -> "TracerProvider | None":
    """Configure OpenTelemetry tracing (console or gcp) for the pipeline spans."""
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if exporter_type == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    elif exporter_type == "gcp":
        try:
            from opentelemetry.exporter.cloud_trace import CloudTraceSpanExporter

            provider.add_span_processor(BatchSpanProcessor(CloudTraceSpanExporter()))  # type: ignore[no-untyped-call]
        except ImportError:
            logger.warning("gcp_trace_exporter_not_available")
            return None
    else:
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    from opentelemetry import trace

    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


def build_orchestrator(
    settings: Settings,
    client: httpx.AsyncClient,
    cooldown: CooldownLimiter,
    metrics: PipelineMetrics | None = None,
) -> PipelineOrchestrator:
    """Wire the default credential chain and both stages around one HTTP client."""
    return PipelineOrchestrator(
        cooldown=cooldown,
        credentials=CredentialResolver.from_settings(settings, client),
        description_stage=DescriptionStage(client, settings),
        synthesis_stage=ImageSynthesisStage(client, settings),
        metrics=metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the shared HTTP client, quota store and orchestrator; close them on shutdown."""
    settings = get_settings()

    otel_provider = None
    otel_exporter = os.environ.get("OTEL_EXPORTER", "")
    if otel_exporter:
        otel_provider = _configure_otel(otel_exporter, os.environ.get("K_SERVICE", "streetscene"))

    if not settings.maps_api_key.get_secret_value():
        logger.warning("maps_api_key_missing", hint="Set MAPS_API_KEY; Street View fetches will fail")

    client = httpx.AsyncClient()
    store = create_quota_store(
        settings.quota_db_path,
        ttl_seconds=settings.cooldown_minutes * 60,
        max_entries=settings.quota_memory_max_entries,
    )
    await store.connect()
    cooldown = CooldownLimiter(store, window_minutes=settings.cooldown_minutes)
    metrics = PipelineMetrics()
    orchestrator = build_orchestrator(settings, client, cooldown, metrics=metrics)

    app.state.settings = settings
    app.state.http_client = client
    app.state.quota_store = store
    app.state.credential_resolver = orchestrator.credentials
    app.state.metrics = metrics
    app.state.pipeline_orchestrator = orchestrator

    logger.info(
        "pipeline_ready",
        cooldown_minutes=settings.cooldown_minutes,
        quota_store=type(store).__name__,
        credential_strategies=orchestrator.credentials.strategy_names,
    )

    try:
        yield
    finally:
        # Flush OTel spans before shutdown (Cloud Run scale-to-zero)
        if otel_provider is not None:
            otel_provider.shutdown()
        await store.disconnect()
        await client.aclose()


def create_app() -> FastAPI:
    """Application factory. Invoked by: uvicorn streetscene.main:create_app --factory"""
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="Street Scene Pipeline",
        description="Street View viewpoint → scene description → synthesized image",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # Middleware order (Starlette applies in reverse): CORS → APIKey → RequestContext
    app.add_middleware(RequestContextMiddleware, identity_header=settings.identity_header)

    api_keys = settings.api_keys
    if api_keys:
        app.add_middleware(APIKeyMiddleware, api_keys=api_keys)
        logger.info("api_key_auth_enabled", active_keys=len(api_keys))
    else:
        logger.warning("api_key_auth_disabled", reason="API_KEY env var not set")

    origins = settings.cors_origins
    if not origins:
        logger.warning(
            "cors_no_origins_configured",
            hint="Set ALLOWED_ORIGINS; cross-origin requests will be rejected.",
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", settings.identity_header],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(scene.router, tags=["scene"])
    app.include_router(styles.router, tags=["styles"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])

    return app
