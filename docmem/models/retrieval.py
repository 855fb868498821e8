"""Search scope, query and result models for the retrieval layer.

Memory search returns two independent ranked lists (``memories`` and
``messages``) rather than one merged ranking so callers always know where a
hit came from.  ``search_mode`` tells the caller how the results were
produced:

* ``vector``        -- similarity search with threshold gating
* ``text_fallback`` -- case-insensitive substring match, no similarity score
* ``none``          -- nothing produced any signal (empty result, not an error)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat

from docmem.models.conversation import Message, ShortTermContext


class SearchTarget(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Which record families a memory search covers."""

    MEMORIES = "memories"
    MESSAGES = "messages"
    BOTH = "both"

    @property
    def includes_memories(self) -> bool:
        return self in (SearchTarget.MEMORIES, SearchTarget.BOTH)

    @property
    def includes_messages(self) -> bool:
        return self in (SearchTarget.MESSAGES, SearchTarget.BOTH)


class SearchMode(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    VECTOR = "vector"
    TEXT_FALLBACK = "text_fallback"
    NONE = "none"


# Finite components only: a NaN similarity never compares below a threshold.
QueryVector = list[FiniteFloat]


class SearchScope(BaseModel):
    """Who is searching and, optionally, what to narrow to."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str | None = None
    document_id: str | None = None


class SearchQuery(BaseModel):
    """Raw text, a precomputed vector, or both."""

    model_config = ConfigDict(frozen=True)

    text: str | None = None
    vector: QueryVector | None = Field(default=None, repr=False)

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


# ---------------------------------------------------------------------------
# Hits
# ---------------------------------------------------------------------------
class MemoryHit(BaseModel):
    """A memory row returned by search.  ``similarity`` is None for text matches."""

    model_config = ConfigDict(frozen=True)

    memory_id: str
    title: str
    content: str
    memory_type: str
    topics: list[str] = Field(default_factory=list)
    scenarios: list[str] = Field(default_factory=list)
    confidence_score: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    similarity: float | None = None


class MessageHit(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: str
    session_id: str
    role: str
    content: str
    created_at: datetime
    similarity: float | None = None


class ChunkHit(BaseModel):
    """A document chunk returned by search, with its document's file name."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    filename: str
    chunk_index: int
    page: int | None = None
    content: str
    similarity: float | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class MemorySearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    memories: list[MemoryHit] = Field(default_factory=list)
    messages: list[MessageHit] = Field(default_factory=list)
    total_results: int = 0
    search_type: SearchTarget = SearchTarget.BOTH
    search_mode: SearchMode = SearchMode.NONE
    query_used: str = "vector_search"


class DocumentSearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunks: list[ChunkHit] = Field(default_factory=list)
    total_results: int = 0
    search_mode: SearchMode = SearchMode.NONE
    query_used: str = "vector_search"


class ScoredMessage(BaseModel):
    """A history message ranked by similarity blended with recency."""

    model_config = ConfigDict(frozen=True)

    message: MessageHit
    relevance_score: float


class ContextAnswer(BaseModel):
    """Everything the retrieval layer knows that is relevant to a query.

    ``context_used`` flags which sources contributed so the caller can
    decide whether to tell the end user that nothing relevant was found.
    """

    model_config = ConfigDict(frozen=True)

    short_term: ShortTermContext | None = None
    recent_messages: list[Message] = Field(default_factory=list)
    relevant_history: list[ScoredMessage] = Field(default_factory=list)
    memories: list[MemoryHit] = Field(default_factory=list)
    chunks: list[ChunkHit] = Field(default_factory=list)
    search_mode: SearchMode = SearchMode.NONE
    context_used: dict[str, bool] = Field(default_factory=dict)
