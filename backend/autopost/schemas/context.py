"""Pydantic schema for the pre-pipeline post configuration.

The context is filled in by the session controller before a pipeline session
or batch run exists. Both components read it, neither mutates it.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Platform = Literal["instagram", "facebook", "twitter", "linkedin"]

STYLES = ("minimalist", "creative", "professional", "casual", "luxury")
TONES = ("funny", "inspiring", "urgent", "educational", "emotional")
GOALS = ("engagement", "sales", "awareness", "community", "traffic")

# Supported post formats per platform: (format id, aspect ratio, pixel size)
PLATFORM_FORMATS: dict[str, list[tuple[str, str, str]]] = {
    "instagram": [
        ("feed", "1:1", "1080x1080px"),
        ("story", "9:16", "1080x1920px"),
        ("reel", "9:16", "1080x1920px"),
    ],
    "facebook": [
        ("feed", "4:5", "1200x1500px"),
        ("story", "9:16", "1080x1920px"),
    ],
    "twitter": [
        ("post", "16:9", "1200x675px"),
        ("card", "2:1", "1200x600px"),
    ],
    "linkedin": [
        ("post", "1.91:1", "1200x628px"),
        ("image", "4:5", "1200x1500px"),
    ],
}


def aspect_ratios_for(platform: str) -> set[str]:
    """Return the aspect ratios a platform accepts."""
    return {ratio for _, ratio, _ in PLATFORM_FORMATS.get(platform, [])}


class PostContext(BaseModel):
    """User configuration shared by every stage and every batch job.

    Empty strings mean "not chosen yet"; use is_complete() before starting
    a pipeline session.
    """

    model_config = ConfigDict(frozen=True)

    topic: str = Field(description="What the post is about")
    platform: Platform = "instagram"
    aspect_ratio: Optional[str] = Field(
        default=None,
        description="Target aspect ratio, e.g. '1:1'. Must be one the platform supports.",
    )
    style: str = ""
    tone: str = ""
    goal: str = ""
    product_image: Optional[str] = Field(
        default=None,
        description="Handle of an uploaded product (or person) reference image",
    )
    preserve_model: bool = Field(
        default=False,
        description="Treat product_image as a person whose appearance must be preserved",
    )

    @model_validator(mode="after")
    def _check_aspect_ratio(self) -> "PostContext":
        if self.aspect_ratio and self.aspect_ratio not in aspect_ratios_for(self.platform):
            allowed = ", ".join(sorted(aspect_ratios_for(self.platform)))
            raise ValueError(
                f"aspect ratio {self.aspect_ratio!r} not supported on {self.platform} "
                f"(allowed: {allowed})"
            )
        return self

    def missing_fields(self) -> list[str]:
        """Return the names of required fields that are still empty."""
        missing = []
        if not self.topic.strip():
            missing.append("topic")
        for name in ("style", "tone", "goal"):
            if not getattr(self, name):
                missing.append(name)
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()
