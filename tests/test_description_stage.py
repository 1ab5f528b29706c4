# ─────────────────────────────────────────────────────────────────────────────
# Description Stage Tests — Street View fetch + Gemini generateContent
# ─────────────────────────────────────────────────────────────────────────────
# Outbound calls are intercepted by the mock_vertex respx router.
# ─────────────────────────────────────────────────────────────────────────────

import base64
import json
from datetime import UTC, datetime

import httpx
import pytest

from streetscene.exceptions import SourceImageUnavailableError
from streetscene.pipeline.description import (
    HARM_CATEGORIES,
    DescriptionStage,
    build_generate_content_body,
    build_safety_settings,
    parse_description_response,
)
from streetscene.pipeline.prompts import BASE_DESCRIPTION_PROMPT
from streetscene.pipeline.types import DESCRIPTION_UNAVAILABLE, AccessToken, Viewpoint
from conftest import JPEG_BYTES, TEST_TOKEN, gemini_payload

TOKEN = AccessToken(value=TEST_TOKEN, expires_at=datetime(2026, 10, 18, 13, 0, tzinfo=UTC))
EIFFEL = Viewpoint(latitude=48.8579, longitude=2.2949, heading=90)


@pytest.fixture
async def stage(test_settings):
    async with httpx.AsyncClient() as http:
        yield DescriptionStage(http, test_settings)


# ── Request building ─────────────────────────────────────────────────────────


class TestRequestBody:
    def test_image_part_precedes_text(self):
        body = build_generate_content_body(b"img", "describe it")
        parts = body["contents"][0]["parts"]

        assert parts[0] == {"inlineData": {"mimeType": "image/jpeg", "data": "aW1n"}}
        assert parts[1] == {"text": "describe it"}
        assert body["contents"][0]["role"] == "user"

    def test_generation_config(self):
        body = build_generate_content_body(b"img", "p")
        assert body["generationConfig"] == {"temperature": 1, "maxOutputTokens": 8192, "topP": 0.95}

    def test_safety_settings_cover_every_category(self):
        settings = build_safety_settings()
        assert [s["category"] for s in settings] == list(HARM_CATEGORIES)
        assert {s["threshold"] for s in settings} == {"BLOCK_MEDIUM_AND_ABOVE"}


# ── Response parsing ─────────────────────────────────────────────────────────


class TestParseDescriptionResponse:
    def test_text_parts_are_joined(self):
        payload = {"candidates": [{"content": {"parts": [{"text": "A "}, {"text": "street."}]}}]}
        result = parse_description_response(b"img", payload)

        assert result.text == "A street."
        assert result.ok
        assert result.error is None
        assert result.parts == payload["candidates"][0]["content"]["parts"]

    @pytest.mark.parametrize("payload", [{}, {"candidates": []}, {"candidates": None}, [], "oops"])
    def test_missing_candidates(self, payload):
        result = parse_description_response(b"img", payload)

        assert result.text == DESCRIPTION_UNAVAILABLE
        assert result.error == "Invalid response structure: missing candidates"
        assert result.parts is None
        assert result.raw == payload
        assert not result.ok

    @pytest.mark.parametrize(
        "candidate", [{}, {"content": {}}, {"content": {"parts": None}}, "candidate"]
    )
    def test_missing_parts(self, candidate):
        result = parse_description_response(b"img", {"candidates": [candidate]})

        assert result.text == DESCRIPTION_UNAVAILABLE
        assert result.error == "Invalid response structure: missing content or parts"

    def test_parts_without_text_keep_parts(self):
        parts = [{"inlineData": {"mimeType": "image/png", "data": "AAAA"}}]
        result = parse_description_response(b"img", {"candidates": [{"content": {"parts": parts}}]})

        assert result.text == DESCRIPTION_UNAVAILABLE
        assert result.error == "Response format didn't contain expected text"
        assert result.parts == parts

    def test_source_image_always_kept(self):
        assert parse_description_response(JPEG_BYTES, {}).source_image == JPEG_BYTES


# ── Stage against mocked upstreams ───────────────────────────────────────────


class TestDescriptionStage:
    async def test_fetches_still_with_viewpoint_params(self, stage, mock_vertex):
        image = await stage.fetch_source_image(EIFFEL)

        assert image == JPEG_BYTES
        params = mock_vertex["streetview"].calls.last.request.url.params
        assert params["location"] == "48.8579,2.2949"
        assert params["heading"] == "90"
        assert params["pitch"] == "0.0"
        assert params["size"] == "1024x576"
        assert params["key"] == "test-maps-key"

    async def test_zero_coordinates_are_valid(self, stage, mock_vertex):
        await stage.fetch_source_image(Viewpoint(latitude=0.0, longitude=0.0))
        assert mock_vertex["streetview"].calls.last.request.url.params["location"] == "0.0,0.0"

    async def test_run_sends_image_and_prompt_to_gemini(self, stage, mock_vertex):
        result = await stage.run(EIFFEL, TOKEN)

        assert result.ok
        assert result.text == gemini_payload()["candidates"][0]["content"]["parts"][0]["text"]
        assert result.source_image == JPEG_BYTES

        request = mock_vertex["gemini"].calls.last.request
        assert request.headers["Authorization"] == f"Bearer {TEST_TOKEN}"
        body = json.loads(request.content)
        parts = body["contents"][0]["parts"]
        assert base64.b64decode(parts[0]["inlineData"]["data"]) == JPEG_BYTES
        assert parts[1]["text"] == BASE_DESCRIPTION_PROMPT

    async def test_style_directive_reaches_prompt(self, stage, mock_vertex):
        viewpoint = Viewpoint(latitude=1.0, longitude=2.0, style_directive="cyberpunk")
        await stage.run(viewpoint, TOKEN)

        body = json.loads(mock_vertex["gemini"].calls.last.request.content)
        assert body["contents"][0]["parts"][1]["text"].endswith("cyberpunk")

    async def test_source_failure_skips_gemini(self, stage, mock_vertex):
        mock_vertex["streetview"].mock(return_value=httpx.Response(403, text="key rejected"))

        with pytest.raises(SourceImageUnavailableError) as exc_info:
            await stage.run(EIFFEL, TOKEN)

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == {"upstreamStatus": 403}
        assert not mock_vertex["gemini"].called

    async def test_source_network_error(self, stage, mock_vertex):
        mock_vertex["streetview"].mock(side_effect=httpx.ConnectTimeout("slow"))

        with pytest.raises(SourceImageUnavailableError):
            await stage.run(EIFFEL, TOKEN)

    async def test_gemini_without_candidates_is_soft(self, stage, mock_vertex):
        mock_vertex["gemini"].mock(return_value=httpx.Response(200, json={"promptFeedback": {}}))

        result = await stage.run(EIFFEL, TOKEN)

        assert result.text == DESCRIPTION_UNAVAILABLE
        assert result.source_image == JPEG_BYTES
        assert result.error == "Invalid response structure: missing candidates"

    async def test_gemini_error_status_is_soft(self, stage, mock_vertex):
        mock_vertex["gemini"].mock(return_value=httpx.Response(500, text="backend exploded"))

        result = await stage.run(EIFFEL, TOKEN)

        assert result.text == DESCRIPTION_UNAVAILABLE
        assert result.error == "Vertex API error: 500 Internal Server Error"
        assert result.error_details == "backend exploded"
        assert result.source_image == JPEG_BYTES

    async def test_gemini_network_error_is_soft(self, stage, mock_vertex):
        mock_vertex["gemini"].mock(side_effect=httpx.ReadTimeout("model busy"))

        result = await stage.run(EIFFEL, TOKEN)

        assert result.error == "Vertex API request failed"
        assert not result.ok

    async def test_gemini_non_json_is_soft(self, stage, mock_vertex):
        mock_vertex["gemini"].mock(return_value=httpx.Response(200, text="not json"))

        result = await stage.run(EIFFEL, TOKEN)

        assert result.error == "Error processing AI response"
        assert result.raw == "not json"

    async def test_model_url(self, stage, test_settings):
        assert stage.model_url == (
            "https://us-central1-aiplatform.googleapis.com/v1/projects/"
            f"{test_settings.gcp_project_id}/locations/us-central1/publishers/google/models/"
            "gemini-2.0-flash-001:generateContent"
        )
