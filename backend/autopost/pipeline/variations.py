"""Request building for batch variations.

Turns the caption generator's variations into per-job GenerationRequests,
adding the target format, the optional product reference and, when a model
description is supplied, a character consistency block with a per-index
camera/pose variation.
"""

from typing import Optional

from autopost.pipeline.stages import PRODUCT_REFERENCE_PREAMBLE, with_format
from autopost.schemas.context import PostContext
from autopost.schemas.generation import GenerationRequest, PostVariation

# Camera/pose variations cycled across batch jobs for character consistency
VARIATION_CONTEXTS = (
    "front view, direct eye contact",
    "three-quarter view from the left",
    "three-quarter view from the right",
    "close-up, engaged expression",
    "medium shot, natural pose",
    "full body, confident posture",
    "low angle looking up, impactful",
    "high angle looking down, intimate",
    "side profile, looking into the distance",
    "back view looking over the shoulder",
)


def character_consistency_prefix(model_description: str, index: int) -> str:
    """Build the consistency block that keeps one person across all variations."""
    variation_context = VARIATION_CONTEXTS[index % len(VARIATION_CONTEXTS)]
    return (
        "CHARACTER CONSISTENCY: The image must feature this specific person:\n"
        f"{model_description.strip()}\n\n"
        "Keep: facial features, skin tone, hair color/style, body type.\n"
        "Vary only: pose, camera angle, expression, setting.\n\n"
        f"VARIATION #{index + 1}: {variation_context}\n\n"
    )


def build_variation_request(
    context: PostContext,
    variation: PostVariation,
    index: int,
    model_description: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> GenerationRequest:
    """Build the Generator request for batch job `index`.

    `owner_id`, when given, groups the job's stored image with the rest of its run.
    """
    prompt = variation.image_prompt.strip()
    if model_description and model_description.strip():
        prompt = character_consistency_prefix(model_description, index) + prompt
    prompt = with_format(prompt, context.aspect_ratio)

    references: tuple[str, ...] = ()
    if context.product_image:
        prompt = f"{PRODUCT_REFERENCE_PREAMBLE}\n\n{prompt}"
        references = (context.product_image,)

    auxiliary: dict = {"batch_index": index}
    if owner_id:
        auxiliary["owner_id"] = owner_id
    return GenerationRequest(
        prompt=prompt,
        reference_artifacts=references,
        auxiliary=auxiliary,
    )
