# Stage 1: Street View still → Gemini scene description.
# Only the image fetch can fail hard. Every model-side problem is folded into
# the returned SceneDescription so the caller keeps the source image.

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from streetscene.config import Settings
from streetscene.exceptions import SourceImageUnavailableError
from streetscene.pipeline.encoding import encode_base64
from streetscene.pipeline.prompts import build_description_prompt
from streetscene.pipeline.types import (
    DESCRIPTION_UNAVAILABLE,
    AccessToken,
    SceneDescription,
    Viewpoint,
)

logger = structlog.get_logger(__name__)

HARM_CATEGORIES = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_HARASSMENT",
)
SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"

GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 1,
    "maxOutputTokens": 8192,
    "topP": 0.95,
}


def build_safety_settings(threshold: str = SAFETY_THRESHOLD) -> list[dict[str, str]]:
    """One safety setting per harm category, all at the same threshold."""
    return [{"category": category, "threshold": threshold} for category in HARM_CATEGORIES]


def build_generate_content_body(image: bytes, prompt: str) -> dict[str, Any]:
    """Gemini generateContent request: inline JPEG first, instruction second."""
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"inlineData": {"mimeType": "image/jpeg", "data": encode_base64(image)}},
                    {"text": prompt},
                ],
            }
        ],
        "generationConfig": dict(GENERATION_CONFIG),
        "safetySettings": build_safety_settings(),
    }


def parse_description_response(source_image: bytes, payload: Any) -> SceneDescription:
    """Validate a generateContent payload level by level.

    Never raises. A wrong shape at any level yields a SceneDescription with
    the failure sentinel as text and the original payload in `raw`.
    """
    candidates = payload.get("candidates") if isinstance(payload, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return SceneDescription(
            source_image=source_image,
            text=DESCRIPTION_UNAVAILABLE,
            raw=payload,
            error="Invalid response structure: missing candidates",
        )

    candidate = candidates[0]
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return SceneDescription(
            source_image=source_image,
            text=DESCRIPTION_UNAVAILABLE,
            raw=payload,
            error="Invalid response structure: missing content or parts",
        )

    texts = [
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip()
    ]
    if not texts:
        # Shape is valid, so the parts are still relayed to the client.
        return SceneDescription(
            source_image=source_image,
            text=DESCRIPTION_UNAVAILABLE,
            raw=payload,
            parts=parts,
            error="Response format didn't contain expected text",
        )
    return SceneDescription(
        source_image=source_image,
        text="".join(texts),
        raw=payload,
        parts=parts,
    )


class DescriptionStage:
    """Fetches the panorama still and asks Gemini to describe it."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    @property
    def model_url(self) -> str:
        return f"{self._settings.vertex_base_url}/{self._settings.gemini_model_id}:generateContent"

    async def fetch_source_image(self, viewpoint: Viewpoint) -> bytes:
        """Download the 16:9 Street View still. The only hard failure of this stage."""
        params = {
            "size": self._settings.streetview_size,
            "location": f"{viewpoint.latitude},{viewpoint.longitude}",
            "heading": viewpoint.heading,
            "pitch": viewpoint.pitch,
            "key": self._settings.maps_api_key.get_secret_value(),
        }
        try:
            response = await self._client.get(
                self._settings.streetview_url,
                params=params,
                timeout=self._settings.streetview_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error("streetview_fetch_failed", error_type=type(e).__name__)
            raise SourceImageUnavailableError() from e

        if not response.is_success:
            logger.error("streetview_fetch_rejected", status=response.status_code)
            raise SourceImageUnavailableError(response.status_code)

        return response.content

    async def describe(
        self, source_image: bytes, prompt: str, token: AccessToken
    ) -> SceneDescription:
        """Call Gemini. Failures come back as a SceneDescription, never raised."""
        try:
            response = await self._client.post(
                self.model_url,
                json=build_generate_content_body(source_image, prompt),
                headers={"Authorization": token.authorization},
                timeout=self._settings.gemini_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("gemini_request_failed", error_type=type(e).__name__)
            return SceneDescription(
                source_image=source_image,
                text=DESCRIPTION_UNAVAILABLE,
                error="Vertex API request failed",
                error_details=type(e).__name__,
            )

        if not response.is_success:
            logger.warning("gemini_error_response", status=response.status_code)
            return SceneDescription(
                source_image=source_image,
                text=DESCRIPTION_UNAVAILABLE,
                raw=response.text,
                error=f"Vertex API error: {response.status_code} {response.reason_phrase}",
                error_details=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            logger.warning("gemini_non_json_response")
            return SceneDescription(
                source_image=source_image,
                text=DESCRIPTION_UNAVAILABLE,
                raw=response.text,
                error="Error processing AI response",
            )

        return parse_description_response(source_image, payload)

    async def run(self, viewpoint: Viewpoint, token: AccessToken) -> SceneDescription:
        """Fetch → prompt → Gemini → validated SceneDescription."""
        t0 = time.perf_counter()
        source_image = await self.fetch_source_image(viewpoint)
        fetch_ms = round((time.perf_counter() - t0) * 1000, 1)

        prompt = build_description_prompt(viewpoint.style_directive)

        t1 = time.perf_counter()
        description = await self.describe(source_image, prompt, token)
        model_ms = round((time.perf_counter() - t1) * 1000, 1)

        logger.info(
            "description_stage_complete",
            ok=description.ok,
            error=description.error,
            image_bytes=len(source_image),
            text_chars=len(description.text),
            styled=bool(viewpoint.style_directive),
            fetch_ms=fetch_ms,
            model_ms=model_ms,
        )
        return description
