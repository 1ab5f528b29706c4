# ─────────────────────────────────────────────────────────────────────────────
# Credential Resolver — Vertex AI bearer token via an ordered strategy list
# ─────────────────────────────────────────────────────────────────────────────
# Strategies are tried in order; the first token wins. The default chain is
# the GCE/Cloud Run metadata server, then the local gcloud CLI. Nothing is
# cached: every pipeline run resolves a fresh token.
#
# The token value is never logged and never placed in an error payload.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import contextlib
import shlex
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

import httpx
import structlog

from streetscene.config import Settings
from streetscene.exceptions import CredentialUnavailableError
from streetscene.pipeline.types import AccessToken, utcnow

logger = structlog.get_logger(__name__)

_DEFAULT_TTL_SECONDS = 3600


@runtime_checkable
class CredentialStrategy(Protocol):
    """One way of obtaining a token. Returns None when it does not apply."""

    @property
    def name(self) -> str: ...

    async def fetch(self) -> AccessToken | None: ...


class MetadataServerStrategy:
    """Token from the instance metadata server (Cloud Run, GCE, GKE).

    Any failure here means "not running on Google Cloud" and is expected
    on developer machines, so it is logged at info level and swallowed.
    """

    name = "metadata_server"

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        timeout_seconds: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._url = url
        self._timeout = timeout_seconds
        self._clock = clock

    async def fetch(self) -> AccessToken | None:
        try:
            response = await self._client.get(
                self._url,
                headers={"Metadata-Flavor": "Google"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.info("metadata_server_unreachable", error_type=type(e).__name__)
            return None

        if not response.is_success:
            logger.info("metadata_server_rejected", status=response.status_code)
            return None

        try:
            body = response.json()
        except ValueError:
            logger.info("metadata_server_bad_body")
            return None

        value = body.get("access_token") if isinstance(body, dict) else None
        if not value:
            logger.info("metadata_server_no_token")
            return None

        try:
            ttl = int(body.get("expires_in") or _DEFAULT_TTL_SECONDS)
        except (TypeError, ValueError):
            logger.info("metadata_server_bad_expiry")
            return None

        return AccessToken(
            value=value,
            expires_at=self._clock() + timedelta(seconds=ttl),
            source=self.name,
        )


class GcloudCliStrategy:
    """Token printed by the local gcloud CLI (operator credentials).

    Non-zero exit, anything on stderr, empty or undecodable stdout, a missing
    executable, or a timeout all count as failure. A cancelled fetch kills
    the child before re-raising.
    """

    name = "gcloud_cli"

    def __init__(
        self,
        command: str = "gcloud auth print-access-token",
        timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._argv = shlex.split(command)
        self._timeout = timeout_seconds
        self._clock = clock

    async def fetch(self) -> AccessToken | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning("gcloud_not_available", error=str(e))
            return None

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            await _terminate(proc)
            logger.warning("gcloud_timed_out", timeout_s=self._timeout)
            return None
        except asyncio.CancelledError:
            await _terminate(proc)
            raise

        if proc.returncode != 0:
            logger.warning("gcloud_failed", returncode=proc.returncode)
            return None
        if stderr.strip():
            # stderr can quote the command line but never the token itself
            logger.warning("gcloud_stderr", stderr=stderr.decode(errors="replace").strip()[:500])
            return None

        try:
            value = stdout.decode().strip()
        except UnicodeDecodeError:
            logger.warning("gcloud_bad_output")
            return None
        if not value:
            logger.warning("gcloud_empty_output")
            return None

        return AccessToken(
            value=value,
            expires_at=self._clock() + timedelta(seconds=_DEFAULT_TTL_SECONDS),
            source=self.name,
        )


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()

class CredentialResolver:
    """Walks the strategy list; first success wins, exhaustion raises."""

    def __init__(self, strategies: Sequence[CredentialStrategy]) -> None:
        self._strategies = list(strategies)

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> CredentialResolver:
        return cls(
            [
                MetadataServerStrategy(
                    client,
                    settings.metadata_token_url,
                    timeout_seconds=settings.metadata_timeout_seconds,
                ),
                GcloudCliStrategy(
                    settings.gcloud_command,
                    timeout_seconds=settings.gcloud_timeout_seconds,
                ),
            ]
        )

    @property
    def strategy_names(self) -> list[str]:
        return [s.name for s in self._strategies]

    async def resolve(self) -> AccessToken:
        """Return a fresh token or raise CredentialUnavailableError."""
        attempted: list[str] = []
        for strategy in self._strategies:
            attempted.append(strategy.name)
            token = await strategy.fetch()
            if token is not None:
                logger.info(
                    "credential_resolved",
                    source=strategy.name,
                    expires_at=token.expires_at.isoformat(),
                )
                return token

        logger.error("credential_unavailable", attempted=attempted)
        raise CredentialUnavailableError(attempted)
