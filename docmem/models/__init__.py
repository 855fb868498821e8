"""Pydantic v2 domain models for documents, memories, conversations and search."""

from docmem.models.conversation import (
    Message,
    MessageRole,
    Session,
    ShortTermContext,
    ShortTermContextView,
)
from docmem.models.document import (
    Chunk,
    ChunkDraft,
    Document,
    DocumentStatus,
    can_transition,
    transition,
)
from docmem.models.ingestion import IngestionPhase, IngestionResult
from docmem.models.memory import Memory, MemoryDraft, MemoryPatch
from docmem.models.retrieval import (
    ChunkHit,
    ContextAnswer,
    DocumentSearchResponse,
    MemoryHit,
    MemorySearchResponse,
    MessageHit,
    ScoredMessage,
    SearchMode,
    SearchQuery,
    SearchScope,
    SearchTarget,
)

__all__ = [
    "Chunk",
    "ChunkDraft",
    "ChunkHit",
    "ContextAnswer",
    "Document",
    "DocumentSearchResponse",
    "DocumentStatus",
    "IngestionPhase",
    "IngestionResult",
    "Memory",
    "MemoryDraft",
    "MemoryHit",
    "MemoryPatch",
    "MemorySearchResponse",
    "Message",
    "MessageHit",
    "MessageRole",
    "ScoredMessage",
    "SearchMode",
    "SearchQuery",
    "SearchScope",
    "SearchTarget",
    "Session",
    "ShortTermContext",
    "ShortTermContextView",
    "can_transition",
    "transition",
]
