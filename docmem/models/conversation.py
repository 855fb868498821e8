"""Session, message and short-term context models.

A session owns its messages and short-term contexts logically: soft-deleting
the session hides it from active listings, but its children stay readable
until the retention job purges them.

Short-term contexts are versioned.  Each regeneration inserts a row with
``summary_version = previous + 1``; the highest version is the current one.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from docmem.models.document import utc_now


class MessageRole(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Session(BaseModel):
    """A conversation session owned by one user."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    user_id: str
    title: str | None = None
    is_active: bool = True
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Message(BaseModel):
    """One conversation turn."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    session_id: str
    user_id: str
    role: MessageRole
    content: str
    embedding: list[float] | None = Field(default=None, repr=False)
    created_at: datetime = Field(default_factory=utc_now)


class ShortTermContext(BaseModel):
    """One version of a session's rolling summary."""

    model_config = ConfigDict(frozen=True)

    context_id: str
    user_id: str
    session_id: str
    summary_version: int = Field(ge=1)
    summary_text: str
    key_topics: list[str] = Field(default_factory=list)
    message_count: int = Field(default=0, ge=0)
    message_start_id: str | None = None
    message_end_id: str | None = None
    context_weight: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Soft relevance knob used by callers when composing a prompt.",
    )
    embedding: list[float] | None = Field(default=None, repr=False)
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed: datetime = Field(default_factory=utc_now)


class ShortTermContextView(BaseModel):
    """Read model returned by ``ContextManager.get_short_term_context``.

    ``current`` is the highest-version summary (``None`` before the first
    summary exists); ``messages`` is the session's raw history in
    chronological order.  Callers compose both into their own prompt.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    current: ShortTermContext | None = None
    version_count: int = 0
    messages: list[Message] = Field(default_factory=list)
    session_deleted: bool = False
