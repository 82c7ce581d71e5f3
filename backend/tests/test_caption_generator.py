"""Tests for LLMCaptionGenerator against a fake LLM adapter."""

from typing import Optional, Type

import pytest
from pydantic import BaseModel

from autopost.errors import GenerationErrorCode, GenerationFailure
from autopost.schemas.generation import CaptionOutput, PostVariation, VariationSetOutput
from autopost.services.caption_generator import LLMCaptionGenerator
from autopost.services.llm import LLMAdapter


class FakeAdapter(LLMAdapter):
    def __init__(self, result=None, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.prompts = []

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        self.prompts.append((prompt, schema, system_prompt))
        if self.error:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_generate_many_single_call(context):
    variations = [
        PostVariation(caption=f"caption {i}", image_prompt=f"prompt {i}") for i in range(3)
    ]
    adapter = FakeAdapter(VariationSetOutput(variations=variations))

    result = await LLMCaptionGenerator(adapter).generate_many(context, 3)

    assert result == variations
    assert len(adapter.prompts) == 1
    prompt, schema, system_prompt = adapter.prompts[0]
    assert schema is VariationSetOutput
    assert "exactly 3 variations" in prompt
    assert '"variation i of 3"' in prompt
    assert "Format: feed, aspect ratio 1:1 (1080x1080px)" in prompt
    assert system_prompt


@pytest.mark.asyncio
async def test_generate_one_strips_caption(context):
    adapter = FakeAdapter(CaptionOutput(caption="  Rise and brew #coffee \n"))

    caption = await LLMCaptionGenerator(adapter).generate_one(context)

    assert caption == "Rise and brew #coffee"
    assert adapter.prompts[0][1] is CaptionOutput


@pytest.mark.asyncio
async def test_generate_one_rejects_empty_caption(context):
    adapter = FakeAdapter(CaptionOutput(caption="   "))

    with pytest.raises(GenerationFailure) as exc_info:
        await LLMCaptionGenerator(adapter).generate_one(context)
    assert exc_info.value.code is GenerationErrorCode.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_malformed_output_maps_to_invalid_response(context):
    adapter = FakeAdapter(error=ValueError("Expecting value: line 1 column 1"))

    with pytest.raises(GenerationFailure) as exc_info:
        await LLMCaptionGenerator(adapter).generate_many(context, 2)
    assert exc_info.value.code is GenerationErrorCode.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_connection_error_maps_to_network_error(context):
    adapter = FakeAdapter(error=ConnectionError("reset by peer"))

    with pytest.raises(GenerationFailure) as exc_info:
        await LLMCaptionGenerator(adapter).generate_one(context)
    assert exc_info.value.code is GenerationErrorCode.NETWORK_ERROR
