# Service API key middleware (constant-time comparison) and caller identity.
# Sign-in lives upstream: the session provider authenticates the user and
# forwards an opaque, stable identity key in a trusted header.


import secrets
from collections.abc import Sequence
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from streetscene.exceptions import UnauthorizedError

logger = structlog.get_logger(__name__)

# Exempt paths: health probes, metrics, style catalogue, root
_EXEMPT_PATHS: frozenset[str] = frozenset(
    {
        "/",
        "/health",
        "/health/ready",
        "/metrics",
        "/metrics/prometheus",
        "/styles",
    }
)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Validate the X-API-Key header against the configured service keys.

    Several keys may be active at once so a caller can rotate without
    downtime. Health probes, metrics and the style catalogue are exempt.
    """

    def __init__(self, app: Any, *, api_keys: Sequence[str]) -> None:
        super().__init__(app)
        self._api_keys = tuple(k.encode() for k in api_keys if k)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        provided_key = request.headers.get("x-api-key", "")

        if not provided_key or not self._matches(provided_key):
            logger.warning(
                "auth_rejected",
                path=request.url.path,
                method=request.method,
                reason="invalid_or_missing_api_key",
            )
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid or missing API key"},
            )

        return await call_next(request)

    def _matches(self, provided: str) -> bool:
        candidate = provided.encode()
        # compare against every key so timing does not reveal which one matched
        results = [secrets.compare_digest(candidate, key) for key in self._api_keys]
        return any(results)


def get_identity(request: Request) -> str:
    """Caller identity from the trusted upstream header. Raises 401 if absent."""
    header = request.app.state.settings.identity_header
    identity = request.headers.get(header, "").strip()
    if not identity:
        logger.warning("identity_missing", path=request.url.path, header=header)
        raise UnauthorizedError()
    return identity
