"""Abstract base class for sessions, messages and short-term contexts.

Messages and contexts of a soft-deleted session stay readable through every
method here; only :meth:`IConversationStore.purge_session` removes them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from docmem.models.conversation import Message, Session, ShortTermContext
from docmem.models.retrieval import MessageHit


class IConversationStore(ABC):
    """Contract for conversation persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""

    # -- sessions --

    @abstractmethod
    async def insert_session(self, session: Session) -> None: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        """Return the session regardless of owner or deletion state."""

    @abstractmethod
    async def update_session(self, session: Session) -> None:
        """Write ``title``, ``is_active``, ``deleted_at`` and ``updated_at``."""

    @abstractmethod
    async def list_sessions(self, user_id: str, active_only: bool = True) -> list[Session]:
        """Return the user's sessions, most recently updated first.

        With *active_only*, sessions that are inactive or soft-deleted are
        excluded.
        """

    @abstractmethod
    async def list_deleted_sessions(self, deleted_before: datetime, limit: int) -> list[Session]:
        """Return soft-deleted sessions whose ``deleted_at`` < *deleted_before*."""

    @abstractmethod
    async def count_session_children(self, session_id: str) -> tuple[int, int]:
        """Return ``(contexts, messages)`` owned by the session."""

    @abstractmethod
    async def purge_session(self, session_id: str) -> tuple[int, int]:
        """Physically delete a session with its contexts and messages.

        Returns ``(contexts_deleted, messages_deleted)``.
        """

    # -- messages --

    @abstractmethod
    async def insert_message(self, message: Message) -> None: ...

    @abstractmethod
    async def list_messages(
        self,
        session_id: str,
        user_id: str,
        limit: int | None = None,
    ) -> list[Message]:
        """Return messages in chronological order.

        With *limit*, only the most recent *limit* messages are returned
        (still oldest first).
        """

    @abstractmethod
    async def count_messages(self, session_id: str, user_id: str) -> int: ...

    @abstractmethod
    async def match_messages(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
        session_id: str | None = None,
        exclude_session_id: str | None = None,
    ) -> list[MessageHit]:
        """Similarity search over message embeddings, best first.

        *session_id* narrows to one session; *exclude_session_id* skips one.
        """

    @abstractmethod
    async def search_messages_text(
        self,
        user_id: str,
        text: str,
        limit: int,
        session_id: str | None = None,
    ) -> list[MessageHit]:
        """Case-insensitive substring match over message content."""

    # -- short-term contexts --

    @abstractmethod
    async def insert_context(self, context: ShortTermContext) -> None:
        """Persist a new context version.

        Raises
        ------
        docmem.utils.errors.PersistenceError
            If the (session, user, version) triple already exists.
        """

    @abstractmethod
    async def latest_context(self, session_id: str, user_id: str) -> ShortTermContext | None:
        """Return the highest-version context for the session."""

    @abstractmethod
    async def list_contexts(
        self,
        session_id: str,
        user_id: str,
        limit: int,
    ) -> list[ShortTermContext]:
        """Return context versions newest first."""

    @abstractmethod
    async def max_context_version(self, session_id: str, user_id: str) -> int:
        """Return the highest version number, or 0 when none exists."""

    @abstractmethod
    async def touch_context(self, context_id: str, accessed_at: datetime) -> None:
        """Update ``last_accessed`` of one context row."""

    @abstractmethod
    async def prune_contexts(self, keep_latest: int) -> int:
        """Delete all but the newest *keep_latest* versions per session.

        Returns the number of rows removed.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
