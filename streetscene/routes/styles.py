from fastapi import APIRouter

from streetscene.pipeline.prompts import STYLE_PRESETS
from streetscene.schemas import StylePreset

router = APIRouter()


@router.get("/styles", response_model=list[StylePreset])
async def list_styles() -> list[StylePreset]:
    """Predefined style twists accepted in the `style` field of /describe-scene."""
    return [
        StylePreset(key=key, label=label, directive=directive)
        for key, (label, directive) in STYLE_PRESETS.items()
    ]
