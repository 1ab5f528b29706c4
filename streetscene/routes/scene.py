# ─────────────────────────────────────────────────────────────────────────────
# Scene routes — describe, synthesize, and the composed call (THIN)
# ─────────────────────────────────────────────────────────────────────────────
# Validation is Pydantic. Errors are exceptions. Logic is in the orchestrator.
# The /api/... paths keep the URLs the existing browser client already calls.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from streetscene.auth import get_identity
from streetscene.dependencies import get_pipeline_orchestrator
from streetscene.exceptions import MissingParameterError
from streetscene.rate_limit import http_rate_limit, limiter
from streetscene.schemas import (
    ComposedResponse,
    DescribeSceneRequest,
    DescribeSceneResponse,
    PipelineStatus,
    SynthesizeImageRequest,
    SynthesizeImageResponse,
)
from streetscene.services.pipeline import PipelineOrchestrator
from streetscene.services.presentation import (
    composed_response,
    describe_response,
    synthesize_response,
)

router = APIRouter()


@router.post(
    "/describe-scene",
    response_model=DescribeSceneResponse,
    response_model_exclude_none=True,
)
@router.post(
    "/api/streetview-description",
    response_model=DescribeSceneResponse,
    response_model_exclude_none=True,
    include_in_schema=False,
)
@limiter.limit(http_rate_limit)
async def describe_scene(
    request: Request,
    body: DescribeSceneRequest,
    identity: str = Depends(get_identity),
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
) -> DescribeSceneResponse:
    """Fetch the Street View still for a viewpoint and describe it.

    A model-side failure still returns 200 with the source image and
    `description.error`; only gate, credential, and image-fetch failures
    are error responses.
    """
    viewpoint = body.to_viewpoint()
    description = await orchestrator.describe_only(viewpoint, identity)
    return describe_response(description)


@router.post(
    "/synthesize-image",
    response_model=SynthesizeImageResponse,
    response_model_exclude_none=True,
)
@router.post(
    "/api/generate-image",
    response_model=SynthesizeImageResponse,
    response_model_exclude_none=True,
    include_in_schema=False,
)
@limiter.limit(http_rate_limit)
async def synthesize_image(
    request: Request,
    body: SynthesizeImageRequest,
    identity: str = Depends(get_identity),
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
) -> SynthesizeImageResponse:
    """Generate an image from a scene description."""
    if not body.description:
        raise MissingParameterError("Missing description")
    result = await orchestrator.synthesize_only(body.description, identity)
    return synthesize_response(result)


@router.post(
    "/describe-and-synthesize",
    response_model=ComposedResponse,
    response_model_exclude_none=True,
)
@limiter.limit(http_rate_limit)
async def describe_and_synthesize(
    request: Request,
    body: DescribeSceneRequest,
    identity: str = Depends(get_identity),
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
) -> ComposedResponse | JSONResponse:
    """Describe a viewpoint, then synthesize an image from the description.

    Consumes one cooldown window. Partial outcomes return 200 with `status`
    telling the client how far the run got; a failed source image is 502.
    """
    viewpoint = body.to_viewpoint()
    result = composed_response(await orchestrator.describe_and_synthesize(viewpoint, identity))
    if result.status == PipelineStatus.failed:
        return JSONResponse(
            status_code=502,
            content=result.model_dump(by_alias=True, exclude_none=True, mode="json"),
        )
    return result
