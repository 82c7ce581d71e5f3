"""Gemini adapter for the LLM abstraction layer.

Wraps the google-genai client with location-aware routing and structured
output. Uses tenacity to retry transient provider errors only.
"""

import asyncio
import logging
from typing import Optional, Type

from google.genai import types as genai_types
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from autopost.config import settings
from autopost.services.llm.base import LLMAdapter
from autopost.services.vertex_client import get_vertex_client, is_retriable, location_for_model

logger = logging.getLogger(__name__)


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by Gemini (google-genai SDK).

    Supports structured JSON output via response_schema and uses the
    cached client from vertex_client.py.
    """

    def __init__(self, model_id: str, timeout_seconds: Optional[float] = None) -> None:
        """Initialize adapter for the given Gemini model.

        Args:
            model_id: Model identifier (e.g., "gemini-2.5-flash").
            timeout_seconds: Bound on each model call; defaults to
                settings.generation.timeout_seconds.
        """
        self._model_id = model_id
        self._timeout = timeout_seconds or settings.generation.timeout_seconds

    @property
    def model_id(self) -> str:
        return self._model_id

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Generate structured text using Gemini.

        Args:
            prompt: User prompt to send.
            schema: Pydantic model class for structured output.
            temperature: Sampling temperature.
            system_prompt: Optional system instruction.
            max_retries: Attempts for transient failures.

        Returns:
            Validated Pydantic model instance.
        """
        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception(is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> BaseModel:
            client = get_vertex_client(location=location_for_model(self._model_id))
            config = genai_types.GenerateContentConfig(
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=schema,
                system_instruction=system_prompt,
            )
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self._model_id,
                    contents=prompt,
                    config=config,
                ),
                timeout=self._timeout,
            )
            return schema.model_validate_json(response.text)

        return await _call()
