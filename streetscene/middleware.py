# ─────────────────────────────────────────────────────────────────────────────
# Request Middleware — correlation id, caller identity, timing
# ─────────────────────────────────────────────────────────────────────────────
# Every log line emitted while a request is in flight (cooldown decisions,
# credential resolution, stage timings) carries request_id and, when present,
# the caller identity, via structlog contextvars.
# ─────────────────────────────────────────────────────────────────────────────


import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

# Probe and scrape paths: high volume, no pipeline work.
_QUIET_PREFIXES = ("/health", "/metrics")


def _inbound_request_id(request: Request) -> str | None:
    """Reuse an upstream id so gateway and service logs correlate."""
    explicit = request.headers.get("x-request-id", "").strip()
    if explicit:
        return explicit[:64]
    # Cloud Run: "TRACE_ID/SPAN_ID;o=1"
    trace = request.headers.get("x-cloud-trace-context", "")
    trace_id = trace.split("/", 1)[0].strip()
    return trace_id[:32] or None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds request_id (and caller identity) into structlog contextvars."""

    def __init__(self, app, *, identity_header: str = "X-User-Id") -> None:  # noqa: ANN001
        super().__init__(app)
        self._identity_header = identity_header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _inbound_request_id(request) or uuid.uuid4().hex[:8]
        request.state.request_id = request_id

        context = {"request_id": request_id}
        identity = request.headers.get(self._identity_header, "").strip()
        if identity:
            context["identity"] = identity
        structlog.contextvars.bind_contextvars(**context)

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars(*context)

        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)

        if not request.url.path.startswith(_QUIET_PREFIXES):
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                "request_completed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=elapsed_ms,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)
        return response
