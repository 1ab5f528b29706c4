# Orchestrator: cooldown gate → token → description → (optional) synthesis.
# The only component the HTTP routes call. Gate and credential failures are
# raised; once the source image exists, the composed run always returns a
# PipelineResult carrying whatever was produced.

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from opentelemetry import trace

from streetscene.exceptions import (
    CooldownActiveError,
    CredentialUnavailableError,
    SourceImageUnavailableError,
    StreetSceneError,
)
from streetscene.pipeline.description import DescriptionStage
from streetscene.pipeline.synthesis import ImageSynthesisStage
from streetscene.pipeline.types import (
    AccessToken,
    DescribedOnly,
    Failed,
    Full,
    PipelineResult,
    SceneDescription,
    SourceImageOnly,
    SynthesizedImage,
    Viewpoint,
)
from streetscene.services.cooldown import CooldownLimiter
from streetscene.services.credentials import CredentialResolver
from streetscene.services.metrics import PipelineMetrics

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class PipelineOrchestrator:
    """Runs the describe / synthesize / composed operations for one identity."""

    def __init__(
        self,
        cooldown: CooldownLimiter,
        credentials: CredentialResolver,
        description_stage: DescriptionStage,
        synthesis_stage: ImageSynthesisStage,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._cooldown = cooldown
        self._credentials = credentials
        self._description = description_stage
        self._synthesis = synthesis_stage
        self._metrics = metrics

    @property
    def credentials(self) -> CredentialResolver:
        return self._credentials

    @property
    def metrics(self) -> PipelineMetrics | None:
        return self._metrics

    @asynccontextmanager
    async def _run(self, operation: str, identity: str) -> AsyncIterator[AccessToken]:
        """Gate one run: check → resolve → record, serialized per identity.

        The cooldown is recorded before any model call, so a run that later
        fails still consumes the window.
        """
        with tracer.start_as_current_span(operation) as span:
            span.set_attribute("operation", operation)
            start = time.perf_counter()

            async with self._cooldown.guard(identity):
                try:
                    with tracer.start_as_current_span("cooldown_check"):
                        ticket = await self._cooldown.check(identity)
                    with tracer.start_as_current_span("credential_resolve"):
                        token = await self._credentials.resolve()
                    await self._cooldown.record(ticket)
                except CooldownActiveError:
                    span.set_attribute("rejected", "cooldown")
                    self._record_rejection("cooldown")
                    raise
                except CredentialUnavailableError:
                    span.set_attribute("rejected", "credential")
                    self._record_rejection("credential")
                    raise

            try:
                yield token
            finally:
                elapsed = round((time.perf_counter() - start) * 1000, 1)
                span.set_attribute("latency_ms", elapsed)
                if self._metrics:
                    self._metrics.record_run(operation, elapsed)
                logger.info("pipeline_run_finished", operation=operation, time_ms=elapsed)

    def _record_rejection(self, reason: str) -> None:
        if self._metrics:
            self._metrics.record_rejection(reason)

    async def _describe(self, viewpoint: Viewpoint, token: AccessToken) -> SceneDescription:
        with tracer.start_as_current_span("describe") as span:
            try:
                description = await self._description.run(viewpoint, token)
            except SourceImageUnavailableError:
                span.set_attribute("source_failed", True)
                if self._metrics:
                    self._metrics.record_source_image_failure()
                raise
            span.set_attribute("description_ok", description.ok)
            if self._metrics:
                self._metrics.record_description(description.ok)
            return description

    async def _synthesize(self, prompt_text: str, token: AccessToken) -> SynthesizedImage:
        with tracer.start_as_current_span("synthesize") as span:
            try:
                result = await self._synthesis.run(prompt_text, token)
            except StreetSceneError:
                span.set_attribute("synthesis_ok", False)
                if self._metrics:
                    self._metrics.record_synthesis(False)
                raise
            span.set_attribute("synthesis_ok", True)
            if self._metrics:
                self._metrics.record_synthesis(True)
            return result

    async def describe_only(self, viewpoint: Viewpoint, identity: str) -> SceneDescription:
        """Stage 1 alone. Raises only for gate, credential, or source-image failure."""
        async with self._run("describe_only", identity) as token:
            return await self._describe(viewpoint, token)

    async def synthesize_only(self, prompt_text: str, identity: str) -> SynthesizedImage:
        """Stage 2 alone. An unusable prompt is rejected before the cooldown is consumed."""
        ImageSynthesisStage.ensure_prompt(prompt_text)
        async with self._run("synthesize_only", identity) as token:
            return await self._synthesize(prompt_text, token)

    async def describe_and_synthesize(self, viewpoint: Viewpoint, identity: str) -> PipelineResult:
        """Composed call billed as one cooldown unit.

        Synthesis runs only when the description text is usable. No second
        gate check happens between the stages.
        """
        async with self._run("describe_and_synthesize", identity) as token:
            try:
                description = await self._describe(viewpoint, token)
            except SourceImageUnavailableError as e:
                return Failed(stage="source_image", reason=e.message, details=e.details)

            if not description.ok:
                logger.info("synthesis_skipped", reason=description.error)
                return SourceImageOnly(description=description)

            try:
                synthesized = await self._synthesize(description.text, token)
            except StreetSceneError as e:
                logger.warning("composed_synthesis_failed", error=e.message)
                return DescribedOnly(
                    description=description,
                    synthesis_failure=Failed(stage="synthesis", reason=e.message, details=e.details),
                )

            return Full(description=description, synthesized=synthesized)
