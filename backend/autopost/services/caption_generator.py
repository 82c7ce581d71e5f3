"""LLM-backed caption generation.

Produces the single caption for a pipeline session and, for batch runs, all
caption/image-prompt variations in one structured-output call.
"""

import logging
from typing import Optional

from autopost.config import settings
from autopost.errors import GenerationErrorCode, GenerationFailure
from autopost.schemas.context import PLATFORM_FORMATS, PostContext
from autopost.schemas.generation import CaptionOutput, PostVariation, VariationSetOutput
from autopost.services.generation import CaptionGenerator
from autopost.services.llm import LLMAdapter, get_adapter
from autopost.services.vertex_client import to_generation_failure

logger = logging.getLogger(__name__)

COPYWRITER_SYSTEM_PROMPT = (
    "You are a professional social media copywriter and an expert prompt engineer "
    "for AI image generation. Write engaging, platform-optimized captions and "
    "detailed, specific image prompts."
)

CAPTION_PROMPT = """Create a {tone} social media caption for {platform} about: {topic}

Goal: {goal}
Style: {style}

Make it engaging, include relevant hashtags and emojis. Keep it under 280 characters."""

VARIATIONS_PROMPT = """Create exactly {count} variations of a {platform} post about: {topic}

Visual Style: {style}
Tone: {tone}
Goal: {goal}
{format_line}

For each variation i (1 to {count}), "variation i of {count}":
- caption: a {tone} caption, different from every other variation while keeping the same theme.
  Include relevant hashtags and emojis. Keep it under 280 characters.
- image_prompt: an image generation prompt with a unique composition or scene for this
  variation. Make it specific, descriptive and under 480 tokens.

Return the variations in order."""


def _format_line(context: PostContext) -> str:
    if not context.aspect_ratio:
        return ""
    for format_id, ratio, size in PLATFORM_FORMATS.get(context.platform, []):
        if ratio == context.aspect_ratio:
            return f"Format: {format_id}, aspect ratio {ratio} ({size})"
    return f"Aspect ratio: {context.aspect_ratio}"


class LLMCaptionGenerator(CaptionGenerator):
    """CaptionGenerator backed by an LLMAdapter with structured output."""

    def __init__(self, adapter: Optional[LLMAdapter] = None, temperature: float = 0.9) -> None:
        """Initialize the caption generator.

        Args:
            adapter: LLM adapter; defaults to the adapter for settings.models.caption_llm
            temperature: Sampling temperature for both calls
        """
        self._adapter = adapter or get_adapter(settings.models.caption_llm)
        self._temperature = temperature

    async def _call(self, prompt: str, schema):
        try:
            return await self._adapter.generate_text(
                prompt=prompt,
                schema=schema,
                temperature=self._temperature,
                system_prompt=COPYWRITER_SYSTEM_PROMPT,
                max_retries=settings.generation.retry_max_attempts,
            )
        except Exception as e:
            failure = to_generation_failure(e)
            logger.error(f"Caption generation failed: {failure}")
            if failure is not e:
                raise failure from e
            raise

    async def generate_one(self, context: PostContext) -> str:
        prompt = CAPTION_PROMPT.format(
            tone=context.tone,
            platform=context.platform,
            topic=context.topic,
            goal=context.goal,
            style=context.style,
        )
        output = await self._call(prompt, CaptionOutput)
        caption = output.caption.strip()
        if not caption:
            raise GenerationFailure(
                "Caption model returned an empty caption", GenerationErrorCode.INVALID_RESPONSE
            )
        logger.info(f"Generated caption for topic {context.topic!r}")
        return caption

    async def generate_many(self, context: PostContext, count: int) -> list[PostVariation]:
        """Generate count variations in a single model call.

        The result is returned as the model produced it; the batch orchestrator
        validates count and distinctness.
        """
        prompt = VARIATIONS_PROMPT.format(
            count=count,
            platform=context.platform,
            topic=context.topic,
            style=context.style,
            tone=context.tone,
            goal=context.goal,
            format_line=_format_line(context),
        )
        output: VariationSetOutput = await self._call(prompt, VariationSetOutput)
        logger.info(
            f"Generated {len(output.variations)} variation(s) for topic {context.topic!r} "
            f"(requested {count})"
        )
        return list(output.variations)
