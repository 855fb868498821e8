"""Abstract base class for LLM service providers.

docmem uses an LLM for two things: describing images during content
extraction, and writing short-term conversation summaries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ILLMProvider(ABC):
    """Contract for chat-completion and vision-capable models."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Generate a text completion.

        Raises
        ------
        docmem.utils.errors.LLMError
            If the API call fails or returns no content.
        """

    @abstractmethod
    async def describe_image(self, image_url: str, instruction: str) -> str:
        """Describe the image at a publicly reachable *image_url*.

        The model's free-text answer is used verbatim as the extracted
        content of the image.

        Raises
        ------
        docmem.utils.errors.LLMError
            If the vision call fails or vision is not supported.
        """

    @abstractmethod
    def supports_vision(self) -> bool:
        """Return ``True`` if :meth:`describe_image` can be called."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
