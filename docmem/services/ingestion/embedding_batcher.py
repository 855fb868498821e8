"""Rate-limit-aware embedding of many texts.

Texts are embedded in fixed-size batches.  Inside a batch every item is a
separate provider call and the calls run concurrently; batches run strictly
one after another with a pacing delay between them, so batch N+1 never
starts before every call of batch N has resolved.

A failed item does not fail the batch: it is replaced by a zero vector of
the provider's dimension and its index is reported as degraded.  Zero
vectors score 0.0 cosine similarity against any query, so degraded chunks
are stored but never surface through a positive-threshold vector search.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from docmem.interfaces.embedding_provider import IEmbeddingProvider
from docmem.utils.errors import EmbeddingError
from docmem.utils.vectors import zero_vector

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_PACING_DELAY = 0.1
DEFAULT_MAX_INPUT_CHARS = 8000


@dataclass
class EmbeddingBatch:
    """Vectors for ``texts[start:start + len(vectors)]``.

    ``degraded`` holds absolute indices (into the full input list) whose
    vector is a zero-vector placeholder.
    """

    start: int
    vectors: list[list[float]]
    degraded: list[int] = field(default_factory=list)


class EmbeddingBatcher:
    """Embeds texts in paced batches with per-item failure isolation.

    Parameters
    ----------
    provider:
        The embedding provider.  Each text is sent via ``embed_single``.
    batch_size:
        Items embedded concurrently per batch.
    pacing_delay:
        Seconds to wait between consecutive batches.
    max_input_chars:
        Inputs are truncated to this many characters before embedding.
    sleep:
        Awaitable sleep used for pacing; injectable for tests.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._provider = provider
        self._batch_size = batch_size
        self._pacing_delay = pacing_delay
        self._max_input_chars = max_input_chars
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def iter_batches(self, texts: list[str]) -> AsyncIterator[EmbeddingBatch]:
        """Yield one :class:`EmbeddingBatch` per batch, in input order.

        The caller can persist each batch before the next one is requested.
        """
        total_batches = -(-len(texts) // self._batch_size)
        for batch_num, start in enumerate(range(0, len(texts), self._batch_size)):
            if batch_num > 0 and self._pacing_delay > 0:
                await self._sleep(self._pacing_delay)

            window = texts[start:start + self._batch_size]
            results = await asyncio.gather(
                *(self._embed_one(start + offset, text) for offset, text in enumerate(window))
            )

            vectors: list[list[float]] = []
            degraded: list[int] = []
            for offset, vector in enumerate(results):
                if vector is None:
                    degraded.append(start + offset)
                    vector = zero_vector(self._provider.get_dimension())
                vectors.append(vector)

            logger.debug(
                "embedding_batch_complete",
                batch=batch_num + 1,
                total_batches=total_batches,
                size=len(window),
                degraded=len(degraded),
            )
            yield EmbeddingBatch(start=start, vectors=vectors, degraded=degraded)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed every text and return vectors in input order."""
        vectors: list[list[float]] = []
        async for batch in self.iter_batches(texts):
            vectors.extend(batch.vectors)
        return vectors

    async def _embed_one(self, index: int, text: str) -> list[float] | None:
        try:
            return await self._provider.embed_single(text[: self._max_input_chars])
        except EmbeddingError as exc:
            logger.warning(
                "embedding_degraded",
                index=index,
                provider=self._provider.get_provider_name(),
                error=str(exc),
            )
            return None
