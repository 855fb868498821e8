"""Ingestion run models: progress phases and the per-run result summary."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from docmem.models.document import DocumentStatus


class IngestionPhase(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Steps of one ingestion run, reported through the progress tracker.

    QUEUED -> DOWNLOADING -> EXTRACTING -> CHUNKING -> EMBEDDING -> COMPLETED
    Any step may jump to FAILED.
    """

    QUEUED = "QUEUED"
    DOWNLOADING = "DOWNLOADING"
    EXTRACTING = "EXTRACTING"
    CHUNKING = "CHUNKING"
    EMBEDDING = "EMBEDDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class IngestionResult(BaseModel):
    """Summary statistics returned after processing one document."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentStatus
    chunk_count: int = Field(default=0, ge=0)
    degraded_chunks: int = Field(
        default=0,
        ge=0,
        description="Chunks stored with a zero-vector placeholder embedding.",
    )
    total_tokens: int = Field(default=0, ge=0)
    error: str | None = None
    ingestion_time: float = Field(default=0.0, ge=0.0, description="Wall-clock seconds.")
