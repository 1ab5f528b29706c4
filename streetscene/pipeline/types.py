# ─────────────────────────────────────────────────────────────────────────────
# Pipeline Types — per-request values passed between stages
# ─────────────────────────────────────────────────────────────────────────────
# All of these live for one request only. The single durable side effect of
# a run is the caller's last-request timestamp (see store/quota_store.py).
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Union

# Placeholder text used instead of raising when the vision model gave no
# usable description. Synthesis refuses to run on it.
DESCRIPTION_UNAVAILABLE = "No description available"


@dataclass(frozen=True)
class Viewpoint:
    """Location plus camera orientation for one Street View still."""

    latitude: float
    longitude: float
    heading: float = 0.0
    pitch: float = 0.0
    style_directive: str | None = None


@dataclass(frozen=True)
class AccessToken:
    """Short-lived bearer token for Vertex AI. Resolved fresh for every run."""

    value: str = field(repr=False)
    expires_at: datetime
    source: str = ""

    @property
    def authorization(self) -> str:
        return f"Bearer {self.value}"


@dataclass(frozen=True)
class SceneDescription:
    """Result of the description stage.

    `source_image` is always present. A soft model failure leaves `text` at
    DESCRIPTION_UNAVAILABLE and sets `error`; `raw` keeps the upstream
    payload (or body text) for diagnostics.
    """

    source_image: bytes = field(repr=False)
    text: str
    raw: Any = field(default=None, repr=False)
    # Content parts of the first candidate; None when the shape was invalid.
    parts: list[Any] | None = None
    error: str | None = None
    error_details: str | None = None

    @property
    def ok(self) -> bool:
        return is_usable_prompt(self.text)


@dataclass(frozen=True)
class SynthesizedImage:
    """Decoded image from the text-to-image model."""

    image: bytes = field(repr=False)
    mime_type: str
    enhanced_prompt: str


# ── Composed-run outcomes ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Failed:
    """A stage failed. For the composed run this is terminal only for the source image."""

    stage: str
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SourceImageOnly:
    """Street View still fetched, description unusable, synthesis not attempted."""

    description: SceneDescription

    @property
    def source_image(self) -> bytes:
        return self.description.source_image


@dataclass(frozen=True)
class DescribedOnly:
    """Description obtained; synthesis failed."""

    description: SceneDescription
    synthesis_failure: Failed | None = None


@dataclass(frozen=True)
class Full:
    description: SceneDescription
    synthesized: SynthesizedImage


PipelineResult = Union[SourceImageOnly, DescribedOnly, Full, Failed]


def utcnow() -> datetime:
    return datetime.now(UTC)


def is_usable_prompt(text: str | None) -> bool:
    """True when text can be handed to the image model."""
    return bool(text and text.strip()) and text != DESCRIPTION_UNAVAILABLE
