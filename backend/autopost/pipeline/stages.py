"""Request builders for the four creative pipeline stages.

Each builder turns (post context, stage parameters, reference artifact) into a
GenerationRequest:
- base_scene: photography prompt from style/tone, optional product reference
- composition: refine framing/background around the previous image
- color_grading: regrade the previous image without touching composition
- typography: render a text overlay on the previous image

Every stage after the first conditions on the nearest earlier Done artifact.
When no such artifact exists the base scene request is used instead.
"""

import logging
from typing import Callable, Dict, Optional

from autopost.errors import ConfigurationError
from autopost.schemas.context import PostContext
from autopost.schemas.generation import GenerationRequest
from autopost.schemas.stage_params import (
    BaseSceneParams,
    ColorGradingParams,
    CompositionParams,
    StageParams,
    TypographyParams,
)

logger = logging.getLogger(__name__)

NEGATIVE_CONSTRAINTS = "8K resolution, photorealistic, no text, no watermarks."

PRODUCT_REFERENCE_PREAMBLE = (
    "IMPORTANT: The attached image contains the PRODUCT that must be the hero of this image.\n"
    "Recreate this exact product with photorealistic accuracy: preserve its shape, colors, "
    "branding, labels, and packaging exactly as shown.\n"
    "The product must be the central subject and focal point of the composition. "
    "Build the entire scene around it.\n"
    "Do NOT replace, alter, or reimagine the product. Do NOT add people unless the prompt "
    "explicitly requests them."
)

PERSON_REFERENCE_PREAMBLE = (
    "IMPORTANT: The attached image contains a PERSON that MUST be preserved exactly.\n"
    "Keep the person's: facial features, skin tone, hair color/style, body type, and overall "
    "appearance.\n"
    "Create a new scene with this EXACT same person."
)

# Photography equipment per visual style
STYLE_PHOTOGRAPHY: Dict[str, Dict[str, str]] = {
    "minimalist": {
        "camera": "Leica M11",
        "lens": "50mm f/2 Summicron",
        "lighting": "Natural window light, high key, soft diffused",
    },
    "creative": {
        "camera": "Canon EOS R5",
        "lens": "24-70mm f/2.8L RF",
        "lighting": "Colored gels, creative backlighting, RGB accents",
    },
    "professional": {
        "camera": "Phase One IQ4 150MP",
        "lens": "120mm f/4 Macro",
        "lighting": "Three-point studio lighting with softbox key light, silver fill, hair light",
    },
    "casual": {
        "camera": "Fujifilm X-T5",
        "lens": "35mm f/1.4 XF",
        "lighting": "Ambient golden hour light, natural and warm",
    },
    "luxury": {
        "camera": "Hasselblad X2D 100C",
        "lens": "90mm f/2.5 XCD",
        "lighting": "Rembrandt lighting, dark moody shadows, single dramatic key light",
    },
}

TONE_MODIFIERS: Dict[str, str] = {
    "funny": "vibrant playful energy, candid feel, bright saturated colors",
    "inspiring": "epic heroic composition, dramatic skies, golden light rays",
    "urgent": "high contrast, sharp focus, dynamic angles, bold red accents",
    "educational": "clean informative layout, balanced neutral tones, clear subject",
    "emotional": "intimate shallow DOF, warm tones, soft vignette, human connection",
}

TYPOGRAPHY_INSTRUCTION = (
    "Add professional typography text to this image while preserving the entire image exactly as is."
)


def map_style_to_photography(style: str, tone: str) -> Dict[str, str]:
    """Return camera, lens, lighting and tonal modifier for a style/tone pair.

    Unknown styles fall back to "professional", unknown tones to "educational".
    """
    equipment = STYLE_PHOTOGRAPHY.get(style, STYLE_PHOTOGRAPHY["professional"])
    return {
        **equipment,
        "tonal_modifier": TONE_MODIFIERS.get(tone, TONE_MODIFIERS["educational"]),
    }


def with_format(prompt: str, aspect_ratio: Optional[str]) -> str:
    """Append the target aspect ratio to a prompt when one is set."""
    if aspect_ratio:
        return f"{prompt} (Format: {aspect_ratio})"
    return prompt


def build_base_scene_prompt(context: PostContext) -> str:
    """Compose the photography prompt for the base scene."""
    photo = map_style_to_photography(context.style, context.tone)
    parts = [
        f"Professional {context.platform} photograph of {context.topic.strip()}, "
        f"shot on {photo['camera']} with {photo['lens']}.",
        f"Lighting: {photo['lighting']}.",
        f"Mood: {photo['tonal_modifier']}.",
    ]
    if context.goal:
        parts.append(f"Optimized for {context.goal}.")
    parts.append("Shallow depth of field, rule of thirds composition.")
    parts.append(NEGATIVE_CONSTRAINTS)
    return " ".join(parts)


def build_base_scene_request(
    context: PostContext,
    params: BaseSceneParams,
) -> GenerationRequest:
    prompt = params.prompt_override or build_base_scene_prompt(context)
    prompt = with_format(prompt, context.aspect_ratio)

    references: tuple[str, ...] = ()
    if context.product_image:
        preamble = PERSON_REFERENCE_PREAMBLE if context.preserve_model else PRODUCT_REFERENCE_PREAMBLE
        prompt = f"{preamble}\n\n{prompt}"
        references = (context.product_image,)

    return GenerationRequest(prompt=prompt, reference_artifacts=references)


def build_composition_prompt(params: CompositionParams) -> str:
    parts = ["Refine this image's composition while preserving the main subject exactly."]
    if params.background:
        parts.append(f"Background: {params.background}.")
    if params.framing:
        parts.append(f"Framing: {params.framing}.")
    if params.camera_angle:
        parts.append(f"Camera angle: {params.camera_angle}.")
    if params.depth_of_field:
        parts.append(f"Depth of field: {params.depth_of_field}.")
    parts.append(f"Keep the subject, colors, and overall quality intact. {NEGATIVE_CONSTRAINTS}")
    return " ".join(parts)


def build_color_grading_prompt(params: ColorGradingParams) -> str:
    parts = [
        "Apply professional color grading to this image while preserving the composition "
        "and subject exactly."
    ]
    if params.temperature:
        parts.append(f"Color temperature: {params.temperature}.")
    if params.contrast:
        parts.append(f"Contrast: {params.contrast}.")
    if params.saturation:
        parts.append(f"Saturation: {params.saturation}.")
    if params.mood:
        parts.append(f"Mood: {params.mood}.")
    if params.film_stock:
        parts.append(f"Film stock emulation: {params.film_stock}.")
    parts.append(f"Do not alter composition, framing, or subject. {NEGATIVE_CONSTRAINTS}")
    return " ".join(parts)


def _composition_request(context, params, reference):
    return GenerationRequest(
        prompt=build_composition_prompt(params),
        reference_artifacts=(reference,),
    )


def _color_grading_request(context, params, reference):
    return GenerationRequest(
        prompt=build_color_grading_prompt(params),
        reference_artifacts=(reference,),
    )


def _typography_request(context, params, reference):
    return GenerationRequest(
        prompt=TYPOGRAPHY_INSTRUCTION,
        reference_artifacts=(reference,),
        auxiliary={
            "text_overlay": {
                "text": params.text,
                "position": params.position,
                "style": params.text_style,
            }
        },
    )


RefinementBuilder = Callable[[PostContext, StageParams, str], GenerationRequest]

# Builders for stages that condition on an earlier artifact
REFINEMENT_BUILDERS: Dict[str, RefinementBuilder] = {
    "composition": _composition_request,
    "color_grading": _color_grading_request,
    "typography": _typography_request,
}

DEFAULT_PARAMS: Dict[str, type[StageParams]] = {
    "base_scene": BaseSceneParams,
    "composition": CompositionParams,
    "color_grading": ColorGradingParams,
    "typography": TypographyParams,
}


def build_stage_request(
    stage_key: str,
    context: PostContext,
    params: Optional[StageParams],
    reference: Optional[str],
) -> GenerationRequest:
    """Build the Generator request for a stage.

    Args:
        stage_key: Key of the stage being run
        context: Post configuration
        params: Stage parameters; defaults are used when None
        reference: Handle of the nearest earlier Done artifact, or None

    Returns:
        GenerationRequest for the stage

    Raises:
        KeyError: If the stage key has no builder
        ConfigurationError: If params is not the parameter model of this stage
    """
    params_cls = DEFAULT_PARAMS[stage_key]
    if params is None:
        params = params_cls()
    elif not isinstance(params, params_cls):
        raise ConfigurationError(
            f"Stage {stage_key} expects {params_cls.__name__}, got {type(params).__name__}"
        )

    if stage_key == "base_scene":
        return build_base_scene_request(context, params)

    if reference is None:
        logger.info(f"No earlier artifact for stage {stage_key}, using base scene request")
        return build_base_scene_request(context, BaseSceneParams())

    return REFINEMENT_BUILDERS[stage_key](context, params, reference)
