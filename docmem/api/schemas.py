"""Request and response bodies for the HTTP API.

Domain models from :mod:`docmem.models` are returned directly where their
shape is already what a caller needs (documents, memories, sessions, search
responses); the schemas here cover request bodies and the few envelopes
that wrap a list or a status.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from docmem.models.conversation import MessageRole
from docmem.models.document import Document, DocumentStatus
from docmem.models.memory import Memory
from docmem.models.retrieval import QueryVector, SearchTarget


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentListResponse(BaseModel):
    documents: list[Document] = Field(default_factory=list)
    total: int = 0


class ProcessAcceptedResponse(BaseModel):
    """Returned by ``POST /documents/{id}/process``; the run continues in the background."""

    document_id: str
    status: DocumentStatus
    message: str = "Processing started"


class DocumentProgressResponse(BaseModel):
    document_id: str
    status: DocumentStatus
    phase: str | None = None
    progress: float = 0.0
    message: str = ""
    chunk_count: int = 0
    processing_error: str | None = None


class DocumentSearchRequest(BaseModel):
    query: str | None = None
    query_vector: QueryVector | None = None
    document_id: str | None = None
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1, le=100)


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class MemorySearchRequest(BaseModel):
    """Body for ``POST /memories/search``.

    ``query_vector`` is an optional precomputed embedding; when absent the
    query text is embedded on the fly.
    """

    query: str | None = None
    query_vector: QueryVector | None = None
    search_type: SearchTarget = SearchTarget.BOTH
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1, le=100)
    session_id: str | None = None


class MemoryListResponse(BaseModel):
    memories: list[Memory] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20


# ---------------------------------------------------------------------------
# Sessions and context
# ---------------------------------------------------------------------------


class SessionCreateRequest(BaseModel):
    title: str | None = None


class MessageCreateRequest(BaseModel):
    role: MessageRole
    content: str = Field(min_length=1)


class ContextUpsertRequest(BaseModel):
    """Body for ``PUT /sessions/{id}/context``."""

    summary_text: str = Field(min_length=1)
    key_topics: list[str] = Field(default_factory=list)
    message_count: int = Field(default=0, ge=0)
    context_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    message_start_id: str | None = None
    message_end_id: str | None = None


class ContextRequest(BaseModel):
    """Body for ``POST /context``: gather everything relevant to a query."""

    query: str | None = None
    query_vector: QueryVector | None = None
    session_id: str | None = None
    document_id: str | None = None


# ---------------------------------------------------------------------------
# Health and errors
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for ``GET /api/v1/health``."""

    status: str
    version: str
    providers: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
