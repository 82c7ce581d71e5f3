"""Abstract interfaces for the generation collaborators.

The orchestration core depends only on these two classes. Concrete
implementations live in image_generator.py and caption_generator.py; tests
substitute in-memory fakes.
"""

from abc import ABC, abstractmethod

from autopost.schemas.context import PostContext
from autopost.schemas.generation import GenerationRequest, PostVariation


class Generator(ABC):
    """Async image generation capability."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> str:
        """Generate one image and return an opaque artifact handle.

        Implementations own timeouts and transient-error retries.

        Args:
            request: Prompt, reference artifact handles and auxiliary parameters.

        Returns:
            Handle of the stored artifact (storage path or URL).

        Raises:
            GenerationFailure: On quota, network, timeout or malformed response.
        """
        ...


class CaptionGenerator(ABC):
    """Async caption generation capability."""

    @abstractmethod
    async def generate_one(self, context: PostContext) -> str:
        """Generate a single caption for a pipeline session.

        Raises:
            GenerationFailure: If the underlying model call fails.
        """
        ...

    @abstractmethod
    async def generate_many(self, context: PostContext, count: int) -> list[PostVariation]:
        """Generate count distinct caption/image-prompt variations in one call.

        Args:
            context: Post configuration shared by all variations.
            count: Number of variations requested.

        Returns:
            List of exactly count variations, variation i describing
            "variation i+1 of count".

        Raises:
            GenerationFailure: If the underlying model call fails.
        """
        ...
