"""LLM provider implementations.

OpenAILLMProvider serves two callers: the image extractor (vision
description of uploaded images) and the context manager (rolling session
summaries).
"""

from docmem.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]
