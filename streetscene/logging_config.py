# ─────────────────────────────────────────────────────────────────────────────
# Logging Configuration — structlog for Cloud Logging
# ─────────────────────────────────────────────────────────────────────────────
# Bearer tokens and API keys must never reach the log stream. Call sites do
# not log them; redact_secrets is the backstop for anything that slips in
# through exception text or third-party event dicts.
# ─────────────────────────────────────────────────────────────────────────────


import logging
import re
import sys
from typing import Any

import structlog

_SECRET_KEYS = frozenset({"authorization", "access_token", "token", "key", "api_key", "maps_api_key"})
_BEARER = re.compile(r"Bearer\s+[A-Za-z0-9._\-]+")
_URL_KEY = re.compile(r"([?&]key=)[^&\s]+")
REDACTED = "[redacted]"


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: blank secret-named fields, scrub tokens from strings."""
    for name, value in event_dict.items():
        if name.lower() in _SECRET_KEYS:
            event_dict[name] = REDACTED
        elif isinstance(value, str):
            event_dict[name] = _URL_KEY.sub(rf"\1{REDACTED}", _BEARER.sub(f"Bearer {REDACTED}", value))
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog, routed through stdlib logging.

    JSON lines for Cloud Logging in production; console rendering for local
    development.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        # foreign_pre_chain covers records from stdlib loggers (uvicorn, aiosqlite)
        foreign_pre_chain=[structlog.stdlib.add_log_level, redact_secrets],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper()))

    # httpx logs each request URL at INFO, and Street View URLs carry the maps key.
    logging.getLogger("httpx").setLevel(logging.WARNING)
