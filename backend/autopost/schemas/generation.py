"""Request and structured-output schemas exchanged with the generation collaborators."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    """A single image generation request.

    reference_artifacts are handles of images the model must condition on,
    sent before the text prompt in the order given.
    """

    model_config = ConfigDict(frozen=True)

    prompt: str
    reference_artifacts: tuple[str, ...] = ()
    auxiliary: dict[str, Any] = Field(default_factory=dict)


class CaptionOutput(BaseModel):
    """Structured output of the single caption call."""

    caption: str = Field(
        description="Platform-optimized caption with hashtags and emojis, under 280 characters"
    )


class PostVariation(BaseModel):
    """One caption plus the image prompt that illustrates it."""

    caption: str = Field(
        description="Platform-optimized caption with hashtags and emojis, under 280 characters"
    )
    image_prompt: str = Field(
        description="Detailed image generation prompt for this variation, under 480 tokens. "
        "Each variation must use a different composition or scene."
    )


class VariationSetOutput(BaseModel):
    """Structured output of the batch caption call."""

    variations: list[PostVariation] = Field(
        description="Distinct post variations on the same theme, in order"
    )
