"""Document ingestion pipeline.

Components (each usable on its own):
    ContentExtractor   -- bytes + media type -> text (strategy per media family)
    DocumentChunker    -- text -> page-tagged, sentence-aligned chunks
    EmbeddingBatcher   -- chunk text -> vectors in paced batches
    IngestionService   -- orchestrates the above and owns the status machine
"""

from docmem.services.ingestion.chunker import INLINE_UPLOAD_MAX_CHARS, DocumentChunker, estimate_tokens
from docmem.services.ingestion.embedding_batcher import EmbeddingBatch, EmbeddingBatcher
from docmem.services.ingestion.extractors import ContentExtractor
from docmem.services.ingestion.ingestion_service import IngestionService

__all__ = [
    "INLINE_UPLOAD_MAX_CHARS",
    "ContentExtractor",
    "DocumentChunker",
    "EmbeddingBatch",
    "EmbeddingBatcher",
    "IngestionService",
    "estimate_tokens",
]
