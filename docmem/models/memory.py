"""Long-term memory models.

A :class:`Memory` is a durable fact about a user distilled from one or more
conversation sessions.  Its embedding is derived from ``title`` and
``content``; any edit to either regenerates it (see
``MemoryService.update_memory``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docmem.models.document import utc_now


class Memory(BaseModel):
    """A long-term memory row."""

    model_config = ConfigDict(frozen=True)

    memory_id: str
    user_id: str
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    memory_type: str = Field(default="general", description="Category tag.")
    topics: list[str] = Field(default_factory=list)
    scenarios: list[str] = Field(default_factory=list)
    confidence_score: float = Field(default=0.8, ge=0.0, le=1.0)
    embedding: list[float] | None = Field(default=None, repr=False)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_session_ids: list[str] = Field(default_factory=list)
    source_message_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def embedding_text(self) -> str:
        return f"{self.title}\n{self.content}"


class MemoryDraft(BaseModel):
    """Caller-supplied fields for a new memory."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    memory_type: str = "general"
    topics: list[str] = Field(default_factory=list)
    scenarios: list[str] = Field(default_factory=list)
    confidence_score: float = Field(default=0.8, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_session_ids: list[str] = Field(default_factory=list)
    source_message_count: int = Field(default=0, ge=0)


class MemoryPatch(BaseModel):
    """Partial update for an existing memory.  ``None`` means unchanged."""

    model_config = ConfigDict(frozen=True)

    title: str | None = Field(default=None, min_length=1)
    content: str | None = Field(default=None, min_length=1)
    memory_type: str | None = None
    topics: list[str] | None = None
    scenarios: list[str] | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    metadata: dict[str, Any] | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
