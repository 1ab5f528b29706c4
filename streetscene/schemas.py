# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response Schemas
# ─────────────────────────────────────────────────────────────────────────────
# Field names are the wire contract consumed by the browser client
# (camelCase where the client expects it).
# ─────────────────────────────────────────────────────────────────────────────


from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from streetscene.exceptions import MissingParameterError
from streetscene.pipeline.prompts import compose_style_directive
from streetscene.pipeline.types import Viewpoint


class DescribeSceneRequest(BaseModel):
    """Viewpoint to describe. Coordinates are optional here so that a missing
    one maps to MissingParameterError (400) instead of a validation 422."""

    model_config = ConfigDict(populate_by_name=True)

    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    heading: float | None = None
    pitch: float | None = Field(None, ge=-90, le=90)
    prompt_additions: str | None = Field(None, alias="promptAdditions", max_length=2000)
    style: str | None = Field(None, description="Key of a predefined style twist, see GET /styles")

    def to_viewpoint(self) -> Viewpoint:
        if self.latitude is None or self.longitude is None:
            raise MissingParameterError("Missing required location parameters")
        return Viewpoint(
            latitude=self.latitude,
            longitude=self.longitude,
            heading=self.heading or 0.0,
            pitch=self.pitch or 0.0,
            style_directive=compose_style_directive(self.style, self.prompt_additions),
        )


class DescriptionError(BaseModel):
    error: str


class DescriptionCandidates(BaseModel):
    candidates: list[dict[str, Any]]


class DescribeSceneResponse(BaseModel):
    """`description` is either the candidates shape or `{error}`."""

    model_config = ConfigDict(populate_by_name=True)

    image: str = Field(..., description="data:image/jpeg;base64,... Street View still")
    description: DescriptionCandidates | DescriptionError
    error_details: str | None = Field(None, alias="errorDetails")
    raw_response: Any = Field(None, alias="rawResponse")


class SynthesizeImageRequest(BaseModel):
    description: str | None = Field(None, max_length=20_000)


class SynthesizeImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image: str = Field(..., description="data:<mime>;base64,... synthesized image")
    enhanced_prompt: str | None = Field(None, alias="enhancedPrompt")


class PipelineStatus(StrEnum):
    """Outcome of the composed describe-then-synthesize call."""

    full = "full"
    described = "described"
    source_image_only = "source_image_only"
    failed = "failed"


class ComposedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: PipelineStatus
    image: str | None = None
    description: str | None = None
    generated_image: str | None = Field(None, alias="generatedImage")
    enhanced_prompt: str | None = Field(None, alias="enhancedPrompt")
    error: str | None = None
    error_details: Any = Field(None, alias="errorDetails")
    failed_stage: str | None = Field(None, alias="failedStage")


class StylePreset(BaseModel):
    key: str
    label: str
    directive: str


class LivenessResponse(BaseModel):
    """Liveness probe — minimal, near-zero cost."""

    status: str = "ok"


class ReadinessResponse(BaseModel):
    """Readiness probe — can the instance serve traffic?"""

    status: str  # "ready" or "not_ready"
    quota_store_connected: bool
    credential_strategies: list[str]
