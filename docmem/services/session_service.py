"""Session lifecycle and message logging.

Deleting a session only sets ``deleted_at`` and clears ``is_active``.  The
session disappears from active listings at once, while its messages and
summaries stay readable until the retention job purges them after the
grace window.  Within the restore window a soft delete can be undone.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from docmem.models.conversation import Message, MessageRole, Session
from docmem.models.document import utc_now
from docmem.utils.errors import (
    AuthorizationError,
    EmbeddingError,
    LifecycleError,
    NotFoundError,
)

if TYPE_CHECKING:
    from docmem.interfaces.conversation_store import IConversationStore
    from docmem.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_RESTORE_WINDOW_DAYS = 30


class SessionService:
    """Creates, lists, deletes and restores sessions; appends messages."""

    def __init__(
        self,
        conversation_store: IConversationStore,
        embedding_provider: IEmbeddingProvider,
        restore_window_days: int = DEFAULT_RESTORE_WINDOW_DAYS,
    ) -> None:
        self._store = conversation_store
        self._embedder = embedding_provider
        self._restore_window = timedelta(days=restore_window_days)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, user_id: str, title: str | None = None) -> Session:
        if not user_id:
            raise AuthorizationError("A user id is required to create a session")
        session = Session(session_id=str(uuid.uuid4()), user_id=user_id, title=title)
        await self._store.insert_session(session)
        logger.info("session_created", session_id=session.session_id, user_id=user_id)
        return session

    async def get_session(self, user_id: str, session_id: str) -> Session:
        session = await self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        if session.user_id != user_id:
            raise AuthorizationError("Not authorized to access this session")
        return session

    async def list_active_sessions(self, user_id: str) -> list[Session]:
        return await self._store.list_sessions(user_id, active_only=True)

    async def soft_delete_session(self, user_id: str, session_id: str) -> Session:
        """Mark a session deleted.  Deleting twice keeps the first timestamp."""
        session = await self.get_session(user_id, session_id)
        if session.is_deleted:
            return session
        now = utc_now()
        deleted = session.model_copy(update={"deleted_at": now, "is_active": False, "updated_at": now})
        await self._store.update_session(deleted)
        logger.info("session_soft_deleted", session_id=session_id, user_id=user_id)
        return deleted

    async def restore_session(self, user_id: str, session_id: str) -> Session:
        """Undo a soft delete made within the restore window.

        Raises
        ------
        LifecycleError
            The session is not deleted, or the window has passed.
        """
        session = await self.get_session(user_id, session_id)
        if session.deleted_at is None:
            raise LifecycleError(f"Session {session_id} is not deleted")
        now = utc_now()
        if now - session.deleted_at > self._restore_window:
            raise LifecycleError(
                f"Session {session_id} was deleted more than "
                f"{self._restore_window.days} days ago and can no longer be restored"
            )
        restored = session.model_copy(update={"deleted_at": None, "is_active": True, "updated_at": now})
        await self._store.update_session(restored)
        logger.info("session_restored", session_id=session_id, user_id=user_id)
        return restored

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def add_message(
        self,
        user_id: str,
        session_id: str,
        role: MessageRole,
        content: str,
    ) -> Message:
        """Append a message to an owned, non-deleted session.

        The message is embedded for later similarity search; an embedding
        failure stores it without a vector.
        """
        session = await self.get_session(user_id, session_id)
        if session.is_deleted:
            raise LifecycleError(f"Session {session_id} has been deleted")
        if not content or not content.strip():
            raise ValueError("Message content must not be empty")

        embedding: list[float] | None
        try:
            embedding = await self._embedder.embed_single(content)
        except EmbeddingError as exc:
            logger.warning("message_embedding_failed", session_id=session_id, error=str(exc))
            embedding = None

        message = Message(
            message_id=str(uuid.uuid4()),
            session_id=session_id,
            user_id=user_id,
            role=role,
            content=content,
            embedding=embedding,
        )
        await self._store.insert_message(message)
        await self._store.update_session(session.model_copy(update={"updated_at": message.created_at}))
        logger.debug("message_added", session_id=session_id, role=role.value)
        return message

    async def list_messages(
        self,
        user_id: str,
        session_id: str,
        limit: int | None = None,
    ) -> list[Message]:
        await self.get_session(user_id, session_id)
        return await self._store.list_messages(session_id, user_id, limit=limit)
