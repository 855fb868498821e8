"""Document and chunk models plus the document status state machine.

A :class:`Document` moves through exactly one of two paths::

    pending -> processing -> completed
    pending -> processing -> failed

``completed`` and ``failed`` are terminal.  Retrying a document means a new
ingestion run on a new document row (see
``IngestionService.reprocess_document``), never a status reset.  Every
status write goes through :func:`transition`, which is the only place the
table of legal moves lives.

All models use frozen config; state changes produce new instances via
``model_copy(update={...})``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docmem.utils.errors import InvalidStatusTransitionError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# DocumentStatus -- the ingestion state machine.
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Processing status of an uploaded document."""

    PENDING = "pending"          # Row created, bytes uploaded, not yet processed
    PROCESSING = "processing"    # Extract / chunk / embed / persist in progress
    COMPLETED = "completed"      # All chunk batches persisted; chunk_count authoritative
    FAILED = "failed"            # Unrecoverable error recorded in processing_error

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.COMPLETED, DocumentStatus.FAILED}),
    DocumentStatus.COMPLETED: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def transition(current: DocumentStatus, target: DocumentStatus) -> DocumentStatus:
    """Validate a status change and return the new status.

    Raises
    ------
    InvalidStatusTransitionError
        If *target* is not reachable from *current* in one step.
    """
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(current.value, target.value)
    return target


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """An uploaded file and its ingestion bookkeeping."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Unique identifier (UUID) of the document.")
    user_id: str = Field(description="Owning user.")
    filename: str = Field(description="Original file name supplied by the caller.")
    media_type: str = Field(description="Declared MIME type, e.g. application/pdf.")
    file_size: int = Field(default=0, ge=0, description="Size of the stored bytes.")
    storage_locator: str = Field(description="Blob store key for the raw bytes.")
    public_url: str | None = Field(
        default=None,
        description="Publicly reachable URL of the blob, when the store exposes one.",
    )
    status: DocumentStatus = Field(default=DocumentStatus.PENDING)
    chunk_count: int = Field(
        default=0,
        ge=0,
        description="Number of persisted chunks. Authoritative only when completed.",
    )
    processing_error: str | None = Field(default=None, description="Last failure message.")
    metadata: dict[str, Any] = Field(default_factory=dict)
    supersedes_id: str | None = Field(
        default=None,
        description="Document this one replaces after a reprocessing run.",
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    processed_at: datetime | None = None
    deleted_at: datetime | None = None

    def with_status(self, target: DocumentStatus, **changes: Any) -> Document:
        """Return a copy moved to *target* via :func:`transition`."""
        new_status = transition(self.status, target)
        return self.model_copy(update={"status": new_status, "updated_at": utc_now(), **changes})


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------
class ChunkDraft(BaseModel):
    """Chunker output: a text slice with its position, not yet embedded."""

    model_config = ConfigDict(frozen=True)

    content: str
    page: int | None = None
    chunk_index: int = Field(ge=0)

    @property
    def token_count(self) -> int:
        # Rough estimate: one token per four characters, rounded up.
        return -(-len(self.content) // 4)


class Chunk(BaseModel):
    """A persisted, embedded slice of a document.  Never edited after insert."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    chunk_index: int = Field(ge=0, description="Ordinal within the document, from 0.")
    page: int | None = None
    content: str
    token_count: int = Field(default=0, ge=0)
    embedding: list[float] = Field(default_factory=list, repr=False)
    embedding_degraded: bool = Field(
        default=False,
        description="True when the embedding call failed and a zero vector was stored.",
    )
    created_at: datetime = Field(default_factory=utc_now)
