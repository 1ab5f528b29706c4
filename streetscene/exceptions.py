# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ── Exception hierarchy ──────────────────────────────────────────────────────


class StreetSceneError(Exception):
    """Base exception for all street scene pipeline errors.

    `message` is user-facing. `details` holds diagnostics (upstream status,
    upstream body, raw model payload) and is rendered in separate response
    fields, never folded into the message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class MissingParameterError(StreetSceneError):
    """Raised when a required request field is absent."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class UnauthorizedError(StreetSceneError):
    """Raised when the request carries no caller identity."""

    def __init__(self) -> None:
        super().__init__("Unauthorized", status_code=401)


class CooldownActiveError(StreetSceneError):
    """Raised when the caller is still inside the cooldown window.

    The message carries the exact remaining minutes and is shown verbatim
    to the user. The handler also sets a Retry-After header in seconds.
    """

    def __init__(self, retry_after_minutes: int):
        self.retry_after_minutes = retry_after_minutes
        super().__init__(
            f"Please wait {retry_after_minutes} minutes before making another request",
            status_code=429,
        )


class CredentialUnavailableError(StreetSceneError):
    """Raised when every credential strategy failed. Fatal for the run."""

    def __init__(self, attempts: list[str] | None = None):
        super().__init__(
            "Failed to get access token",
            status_code=503,
            details={"attempts": attempts or []},
        )


class SourceImageUnavailableError(StreetSceneError):
    """Raised when the Street View still cannot be fetched. Fatal for the run."""

    def __init__(self, upstream_status: int | None = None):
        details: dict[str, Any] = {}
        if upstream_status is not None:
            details["upstreamStatus"] = upstream_status
        super().__init__("Failed to fetch street view image", status_code=502, details=details)


class SynthesisPreconditionError(StreetSceneError):
    """Raised when synthesis is asked to run on an unusable prompt."""

    def __init__(self) -> None:
        super().__init__(
            "No valid description available to generate an image",
            status_code=400,
        )


class SynthesisUnavailableError(StreetSceneError):
    """Raised when the image model call fails (non-2xx or network)."""

    def __init__(self, reason: str, upstream_status: int | None = None, body: str | None = None):
        details: dict[str, Any] = {}
        if upstream_status is not None:
            details["upstreamStatus"] = upstream_status
        if body is not None:
            details["errorDetails"] = body
        super().__init__(reason, status_code=502, details=details)


class InvalidPredictionError(StreetSceneError):
    """Raised when the image model answered without a usable prediction."""

    def __init__(self, raw_response: Any):
        super().__init__(
            "No valid image generated",
            status_code=502,
            details={"rawResponse": raw_response},
        )


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    Endpoints raise StreetSceneError subclasses; these handlers catch them
    and return structured JSON. No inline try/except in endpoints.
    """

    @app.exception_handler(CooldownActiveError)
    async def cooldown_handler(request: Request, exc: CooldownActiveError) -> JSONResponse:
        """429 with Retry-After header."""
        logger.info(
            "cooldown_rejected_response",
            path=request.url.path,
            retry_after_minutes=exc.retry_after_minutes,
        )
        return JSONResponse(
            status_code=429,
            content={
                "error": exc.message,
                "type": "CooldownActiveError",
                "retryAfterMinutes": exc.retry_after_minutes,
            },
            headers={"Retry-After": str(exc.retry_after_minutes * 60)},
        )

    @app.exception_handler(StreetSceneError)
    async def street_scene_error_handler(request: Request, exc: StreetSceneError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "street_scene_error",
            path=request.url.path,
            error=exc.message,
            error_type=type(exc).__name__,
            status=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "type": type(exc).__name__, **exc.details},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "type": "UnhandledError"},
        )
