"""LLM provider abstraction layer.

Provides a unified async interface for structured text generation.

Usage:
    from autopost.services.llm import get_adapter, LLMAdapter

    adapter = get_adapter("gemini-2.5-flash")
    result = await adapter.generate_text(prompt, MySchema)
"""

from autopost.services.llm.base import LLMAdapter
from autopost.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
