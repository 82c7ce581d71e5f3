"""Per-stage user parameters for the creative pipeline.

Every field is optional: an unset adjustment is simply left out of the
stage instruction.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TextPosition = Literal["top", "center", "bottom"]
TextStyle = Literal[
    "bold", "elegant", "playful", "minimal", "neon",
    "threed", "gradient", "vintage", "graffiti",
]


class StageParams(BaseModel):
    """Base class for stage parameter models."""

    model_config = ConfigDict(frozen=True)


class BaseSceneParams(StageParams):
    """Parameters for the base scene stage."""

    prompt_override: Optional[str] = Field(
        default=None,
        description="User-edited prompt that replaces the generated photography prompt",
    )


class CompositionParams(StageParams):
    """Composition refinement adjustments."""

    background: Optional[str] = None
    framing: Optional[str] = None
    camera_angle: Optional[str] = None
    depth_of_field: Optional[str] = None


class ColorGradingParams(StageParams):
    """Color grading adjustments."""

    temperature: Optional[str] = None
    contrast: Optional[str] = None
    saturation: Optional[str] = None
    mood: Optional[str] = None
    film_stock: Optional[str] = None


class TypographyParams(StageParams):
    """Text overlay rendered by the image model."""

    text: str = ""
    position: TextPosition = "center"
    text_style: TextStyle = "bold"
