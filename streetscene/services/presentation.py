# Maps pipeline values onto the wire schemas. Diagnostics (upstream bodies,
# raw payloads) always go in their own fields, never into `error`.

from streetscene.pipeline.encoding import to_data_uri
from streetscene.pipeline.types import (
    DescribedOnly,
    Failed,
    Full,
    PipelineResult,
    SceneDescription,
    SourceImageOnly,
    SynthesizedImage,
)
from streetscene.schemas import (
    ComposedResponse,
    DescribeSceneResponse,
    DescriptionCandidates,
    DescriptionError,
    PipelineStatus,
    SynthesizeImageResponse,
)

SOURCE_IMAGE_MIME = "image/jpeg"


def describe_response(description: SceneDescription) -> DescribeSceneResponse:
    image = to_data_uri(description.source_image, SOURCE_IMAGE_MIME)
    if description.parts is not None:
        return DescribeSceneResponse(
            image=image,
            description=DescriptionCandidates(
                candidates=[{"content": {"parts": description.parts}}]
            ),
        )
    return DescribeSceneResponse(
        image=image,
        description=DescriptionError(error=description.error or "Unknown error"),
        error_details=description.error_details,
        raw_response=description.raw if description.error_details is None else None,
    )


def synthesize_response(result: SynthesizedImage) -> SynthesizeImageResponse:
    return SynthesizeImageResponse(
        image=to_data_uri(result.image, result.mime_type),
        enhanced_prompt=result.enhanced_prompt,
    )


def composed_response(result: PipelineResult) -> ComposedResponse:
    """Render every partial state; nothing already produced is dropped."""
    if isinstance(result, Failed):
        return ComposedResponse(
            status=PipelineStatus.failed,
            error=result.reason,
            error_details=result.details or None,
            failed_stage=result.stage,
        )
    if not isinstance(result, (SourceImageOnly, DescribedOnly, Full)):
        raise TypeError(f"Unexpected pipeline result: {type(result).__name__}")

    image = to_data_uri(result.description.source_image, SOURCE_IMAGE_MIME)

    if isinstance(result, SourceImageOnly):
        description = result.description
        return ComposedResponse(
            status=PipelineStatus.source_image_only,
            image=image,
            error=description.error,
            error_details=description.error_details,
            failed_stage="description",
        )

    if isinstance(result, DescribedOnly):
        failure = result.synthesis_failure
        return ComposedResponse(
            status=PipelineStatus.described,
            image=image,
            description=result.description.text,
            error=failure.reason if failure else None,
            error_details=(failure.details or None) if failure else None,
            failed_stage=failure.stage if failure else None,
        )

    return ComposedResponse(
        status=PipelineStatus.full,
        image=image,
        description=result.description.text,
        generated_image=to_data_uri(result.synthesized.image, result.synthesized.mime_type),
        enhanced_prompt=result.synthesized.enhanced_prompt,
    )
