"""Shared fakes for the orchestration tests.

The fakes stand in for the Gemini-backed collaborators so the state machine
and batch loop can be exercised without network access.
"""

from typing import Callable, Optional

import pytest

from autopost.errors import GenerationErrorCode, GenerationFailure
from autopost.schemas.context import PostContext
from autopost.schemas.generation import GenerationRequest, PostVariation
from autopost.services.generation import CaptionGenerator, Generator


class FakeGenerator(Generator):
    """Returns artifacts "A1", "A2", ... and records every request.

    fail_on holds 0-based call numbers that raise a GenerationFailure.
    on_call, when set, runs at the start of every call (used to observe
    orchestrator state while a call is in flight).
    """

    def __init__(self, fail_on: Optional[set[int]] = None) -> None:
        self.requests: list[GenerationRequest] = []
        self.fail_on = set(fail_on or ())
        self.on_call: Optional[Callable[[GenerationRequest], None]] = None

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def generate(self, request: GenerationRequest) -> str:
        call_number = len(self.requests)
        self.requests.append(request)
        if self.on_call:
            self.on_call(request)
        if call_number in self.fail_on:
            raise GenerationFailure(
                f"quota exhausted on call {call_number}", GenerationErrorCode.QUOTA_EXCEEDED, 429
            )
        return f"A{call_number + 1}"


class FakeCaptionGenerator(CaptionGenerator):
    def __init__(self, captions: Optional[list[str]] = None) -> None:
        self.captions = captions
        self.calls = 0

    async def generate_one(self, context: PostContext) -> str:
        self.calls += 1
        return f"A post about {context.topic} #autopost"

    async def generate_many(self, context: PostContext, count: int) -> list[PostVariation]:
        self.calls += 1
        captions = self.captions or [
            f"Variation {i + 1} of {count}: {context.topic}" for i in range(count)
        ]
        return [
            PostVariation(caption=caption, image_prompt=f"scene {i + 1} for {context.topic}")
            for i, caption in enumerate(captions)
        ]


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def context() -> PostContext:
    return PostContext(
        topic="cold brew coffee",
        platform="instagram",
        aspect_ratio="1:1",
        style="minimalist",
        tone="inspiring",
        goal="engagement",
    )


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def caption_generator() -> FakeCaptionGenerator:
    return FakeCaptionGenerator()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
