"""Gemini image generator.

Implements the Generator interface on top of Gemini generate_content():
- Reference artifacts are loaded from the ArtifactStore and sent before the prompt
- Text overlay parameters are rendered into the prompt
- Each attempt is bounded by settings.generation.timeout_seconds
- Transient provider errors are retried with exponential backoff
- Every other failure surfaces as a GenerationFailure with an error code
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from google import genai
from google.genai import types
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from autopost.config import settings
from autopost.errors import GenerationErrorCode, GenerationFailure
from autopost.schemas.generation import GenerationRequest
from autopost.services.file_manager import ArtifactStore
from autopost.services.generation import Generator
from autopost.services.vertex_client import (
    get_vertex_client,
    is_retriable,
    location_for_model,
    to_generation_failure,
)

logger = logging.getLogger(__name__)

_POSITION_HINTS = {
    "top": "in the upper third of the image",
    "center": "centered in the image",
    "bottom": "in the lower third of the image",
}


def render_text_overlay(overlay: dict[str, Any]) -> str:
    """Describe a text overlay request as a prompt instruction."""
    text = str(overlay.get("text", "")).strip()
    if not text:
        return ""
    position = _POSITION_HINTS.get(overlay.get("position", "center"), _POSITION_HINTS["center"])
    style = overlay.get("style", "bold")
    return (
        f'Render the exact text "{text}" {position}, in a {style} typographic style. '
        "Spell it exactly as given, keep it legible against the background and "
        "do not add any other text."
    )


def build_prompt(request: GenerationRequest) -> str:
    """Return the final text prompt, folding auxiliary parameters into it."""
    prompt = request.prompt
    overlay = request.auxiliary.get("text_overlay")
    if overlay:
        instruction = render_text_overlay(overlay)
        if instruction:
            prompt = f"{prompt}\n\n{instruction}"
    return prompt


class GeminiImageGenerator(Generator):
    """Generator backed by a Gemini image model."""

    def __init__(
        self,
        store: ArtifactStore,
        model_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        client_factory: Callable[..., genai.Client] = get_vertex_client,
    ) -> None:
        """Initialize the generator.

        Args:
            store: Where generated images are written and references read from
            model_id: Image model; defaults to settings.models.image_gen
            timeout_seconds: Bound on each attempt; defaults to
                settings.generation.timeout_seconds
            max_attempts: Attempts for transient errors; defaults to
                settings.generation.retry_max_attempts
            client_factory: Returns a genai.Client for a location
        """
        self._store = store
        self._model_id = model_id or settings.models.image_gen
        self._timeout = timeout_seconds or settings.generation.timeout_seconds
        self._max_attempts = max_attempts or settings.generation.retry_max_attempts
        self._client_factory = client_factory

    async def _load_references(self, handles: tuple[str, ...]) -> list[types.Part]:
        parts = []
        for handle in handles:
            data, mime_type = await self._store.load(handle)
            parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        return parts

    async def _generate_once(self, client: genai.Client, contents: list) -> tuple[bytes, str]:
        response = await asyncio.wait_for(
            client.aio.models.generate_content(
                model=self._model_id,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                ),
            ),
            timeout=self._timeout,
        )

        candidates = response.candidates or []
        if candidates and candidates[0].content and candidates[0].content.parts:
            for part in candidates[0].content.parts:
                if part.inline_data and part.inline_data.data:
                    return part.inline_data.data, part.inline_data.mime_type or "image/png"

        raise GenerationFailure(
            "No image generated in response", GenerationErrorCode.INVALID_RESPONSE
        )

    async def generate(self, request: GenerationRequest) -> str:
        """Generate one image and store it.

        Contents order: [reference_1, ..., reference_n, text_prompt]

        Returns:
            Handle of the stored image

        Raises:
            GenerationFailure: On any provider, transport or response error
        """
        call_start = time.monotonic()
        try:
            client = self._client_factory(location=location_for_model(self._model_id))
            contents: list = await self._load_references(request.reference_artifacts)
            contents.append(build_prompt(request))

            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(
                    multiplier=settings.generation.retry_base_delay, min=2, max=60
                )
                + wait_random(0, 2),
                retry=retry_if_exception(is_retriable),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    data, mime_type = await self._generate_once(client, contents)
        except Exception as e:
            failure = to_generation_failure(e)
            if failure is not e:
                raise failure from e
            raise

        owner_id = request.auxiliary.get("owner_id", "shared")
        try:
            handle = self._store.save(data, mime_type=mime_type, owner_id=owner_id)
        except (OSError, ValueError) as e:
            raise GenerationFailure(
                f"Failed to store generated image: {e}", GenerationErrorCode.API_ERROR
            ) from e
        logger.info(
            f"Generated image with {self._model_id} in {time.monotonic() - call_start:.2f}s "
            f"({len(request.reference_artifacts)} reference(s)) -> {handle}"
        )
        return handle
