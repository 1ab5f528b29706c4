# Stage 2: description text → Imagen image.
# Single-instance predict call, 16:9, prompt enhancement on, one sample.

from __future__ import annotations

from typing import Any

import httpx
import structlog

from streetscene.config import Settings
from streetscene.exceptions import (
    InvalidPredictionError,
    SynthesisPreconditionError,
    SynthesisUnavailableError,
)
from streetscene.pipeline.encoding import decode_base64
from streetscene.pipeline.types import AccessToken, SynthesizedImage, is_usable_prompt

logger = structlog.get_logger(__name__)

ASPECT_RATIO = "16:9"


def build_predict_body(prompt: str) -> dict[str, Any]:
    return {
        "instances": [{"prompt": prompt}],
        "parameters": {
            "sampleCount": 1,
            "aspectRatio": ASPECT_RATIO,
            "enhancePrompt": True,
        },
    }


def parse_prediction(prompt: str, payload: Any) -> SynthesizedImage:
    """Decode the first prediction, or raise InvalidPredictionError.

    The prediction must carry both `mimeType` and a valid base64
    `bytesBase64Encoded`. The enhanced prompt falls back to the input prompt.
    """
    predictions = payload.get("predictions") if isinstance(payload, dict) else None
    first = predictions[0] if isinstance(predictions, list) and predictions else None
    if not isinstance(first, dict):
        raise InvalidPredictionError(payload)

    mime_type = first.get("mimeType")
    encoded = first.get("bytesBase64Encoded")
    if not mime_type or not encoded or not isinstance(encoded, str):
        raise InvalidPredictionError(payload)

    try:
        image = decode_base64(encoded)
    except ValueError:
        raise InvalidPredictionError(payload) from None

    return SynthesizedImage(
        image=image,
        mime_type=mime_type,
        enhanced_prompt=first.get("prompt") or prompt,
    )


class ImageSynthesisStage:
    """Asks Imagen for one image from a text prompt."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    @property
    def model_url(self) -> str:
        return f"{self._settings.vertex_base_url}/{self._settings.imagen_model_id}:predict"

    @staticmethod
    def ensure_prompt(prompt_text: str | None) -> str:
        """Precondition: never send the failure sentinel or a blank prompt upstream."""
        if not is_usable_prompt(prompt_text):
            raise SynthesisPreconditionError()
        return prompt_text  # type: ignore[return-value]

    async def run(self, prompt_text: str, token: AccessToken) -> SynthesizedImage:
        prompt = self.ensure_prompt(prompt_text)

        try:
            response = await self._client.post(
                self.model_url,
                json=build_predict_body(prompt),
                headers={"Authorization": token.authorization},
                timeout=self._settings.imagen_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error("imagen_request_failed", error_type=type(e).__name__)
            raise SynthesisUnavailableError("Imagen API request failed") from e

        if not response.is_success:
            logger.error("imagen_error_response", status=response.status_code)
            raise SynthesisUnavailableError(
                f"Imagen API error: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            raise InvalidPredictionError(response.text) from None

        result = parse_prediction(prompt, payload)
        logger.info(
            "synthesis_stage_complete",
            mime_type=result.mime_type,
            image_bytes=len(result.image),
            prompt_enhanced=result.enhanced_prompt != prompt,
        )
        return result
