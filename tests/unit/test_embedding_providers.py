"""Unit tests for the OpenAI embedding provider adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import openai
import pytest

from docmem.config.settings import Settings
from docmem.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docmem.utils.errors import EmbeddingError

_CLIENT_PATH = "docmem.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _embedding_response(vectors: list[list[float]]) -> MagicMock:
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    response.usage = MagicMock(total_tokens=12)
    return response


class TestOpenAIEmbeddingProvider:
    def test_defaults(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        assert provider.get_dimension() == 1536
        assert provider.get_max_input_chars() == 8192 * 4
        assert provider.get_provider_name() == "openai_embedding"

    def test_known_model_dimensions(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="BAAI/bge-base-en-v1.5", openai_base_url="https://x/v1")
        )
        assert provider.get_dimension() == 768
        assert provider.get_max_input_chars() == 512 * 4
        assert provider.get_provider_name() == "openai-compatible_embedding"

    @pytest.mark.asyncio
    async def test_embed_batch(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=_embedding_response([[0.1, 0.2], [0.3, 0.4]])
        )

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            vectors = await provider.embed(["a", "b"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        kwargs = mock_client.embeddings.create.call_args.kwargs
        assert kwargs["input"] == ["a", "b"]
        assert kwargs["model"] == "text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_embedding_response([[1.0, 0.0]]))

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            assert await provider.embed_single("hello") == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_empty_input_skips_api(self) -> None:
        mock_client = AsyncMock()
        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            assert await provider.embed([]) == []
        mock_client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_key_raises_without_calling_api(self) -> None:
        mock_client = AsyncMock()
        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings(openai_api_key=""))
            assert provider.is_available() is False
            with pytest.raises(EmbeddingError, match="No embedding API key"):
                await provider.embed_single("hello")
        mock_client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=openai.APIError(message="Server error", request=MagicMock(), body=None)
        )

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(EmbeddingError, match="Server error"):
                await provider.embed(["text"])

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_embedding_response([[0.1]]))

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(EmbeddingError, match="Expected 2 embeddings"):
                await provider.embed(["a", "b"])
