"""Embedding provider implementations.

Embeddings turn chunk, memory, message and summary text into vectors that
the SQLite record stores rank with numpy cosine similarity.

    OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims) by default.
    Also talks to any OpenAI-compatible endpoint via ``OPENAI_BASE_URL``.
"""

from docmem.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
