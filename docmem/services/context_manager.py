"""Short-term conversation context: versioned rolling summaries per session.

Each session has at most one *current* summary, the row with the highest
``summary_version``.  Writing a summary never edits a row: it inserts
version ``max + 1``, and older versions stay as history until the
retention job prunes them.

Readers get the current summary together with the session's raw message
history in chronological order and compose both into their own prompt;
this module makes no token-budget decisions.

Soft-deleted sessions stay readable here until they are purged.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from docmem.models.conversation import MessageRole, ShortTermContext, ShortTermContextView
from docmem.models.document import utc_now
from docmem.utils.errors import (
    AuthorizationError,
    EmbeddingError,
    LLMError,
    NotFoundError,
    PersistenceError,
)

if TYPE_CHECKING:
    from docmem.interfaces.conversation_store import IConversationStore
    from docmem.interfaces.embedding_provider import IEmbeddingProvider
    from docmem.interfaces.llm_provider import ILLMProvider
    from docmem.models.conversation import Message, Session

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MIN_MESSAGES = 3
DEFAULT_REGENERATE_AFTER = 3
DEFAULT_SUMMARY_WINDOW = 20
DEFAULT_VERSION_LIST_LIMIT = 50
DEFAULT_MAX_KEY_TOPICS = 5
GENERATED_SUMMARY_WEIGHT = 1.0

_SUMMARY_SYSTEM_PROMPT = (
    "You are creating a concise summary of a conversation. Focus on:\n"
    "- Key questions or topics discussed\n"
    "- The user's situation and goals\n"
    "- Progress made or conclusions reached\n"
    "- Context that matters for future interactions\n\n"
    "Keep the summary under 200 words and focus on context that would help "
    "continue the conversation effectively."
)

TOPIC_KEYWORDS: tuple[str, ...] = (
    "networking",
    "leadership",
    "communication",
    "conflict",
    "management",
    "team",
    "strategy",
    "influence",
    "negotiation",
    "stakeholder",
    "career",
    "promotion",
    "feedback",
    "performance",
    "goals",
    "meeting",
    "presentation",
    "project",
    "decision",
    "problem",
)


def extract_key_topics(
    summary_text: str,
    messages: list[Message],
    max_topics: int = DEFAULT_MAX_KEY_TOPICS,
) -> list[str]:
    """Return keywords from :data:`TOPIC_KEYWORDS` present in the text, in list order."""
    haystack = " ".join([summary_text, *(m.content for m in messages)]).lower()
    return [kw for kw in TOPIC_KEYWORDS if kw in haystack][:max_topics]


def fallback_summary(messages: list[Message]) -> str:
    """Deterministic summary used when the LLM is unavailable."""
    openers: list[str] = []
    for message in messages:
        if message.role != MessageRole.USER:
            continue
        head = message.content[:50]
        for i, ch in enumerate(head):
            if ch in ".!?":
                head = head[:i]
                break
        openers.append(head.strip())
        if len(openers) == 3:
            break
    covered = ", ".join(openers) if openers else "no user messages"
    return (
        f"Conversation covered: {covered}. {len(messages)} messages exchanged. "
        "Summary generated without a language model."
    )


class ContextManager:
    """Reads and writes versioned short-term summaries.

    Parameters
    ----------
    conversation_store:
        Sessions, messages and context versions.
    embedding_provider:
        Embeds summary text; failures store the summary without a vector.
    llm:
        Optional LLM for :meth:`refresh_summary`; without one the
        deterministic fallback summary is used.
    """

    def __init__(
        self,
        conversation_store: IConversationStore,
        embedding_provider: IEmbeddingProvider,
        llm: ILLMProvider | None = None,
        min_messages: int = DEFAULT_MIN_MESSAGES,
        regenerate_after: int = DEFAULT_REGENERATE_AFTER,
        summary_window: int = DEFAULT_SUMMARY_WINDOW,
        max_key_topics: int = DEFAULT_MAX_KEY_TOPICS,
        version_list_limit: int = DEFAULT_VERSION_LIST_LIMIT,
    ) -> None:
        self._store = conversation_store
        self._embedder = embedding_provider
        self._llm = llm
        self._min_messages = min_messages
        self._regenerate_after = regenerate_after
        self._summary_window = summary_window
        self._max_key_topics = max_key_topics
        self._version_list_limit = version_list_limit

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_short_term_context(self, user_id: str, session_id: str) -> ShortTermContextView:
        """Return the current summary and the ordered message history.

        Touches the current version's ``last_accessed``.  Works for
        soft-deleted sessions.
        """
        session = await self._owned_session(user_id, session_id)
        current = await self._store.latest_context(session_id, user_id)
        if current is not None:
            accessed = utc_now()
            await self._store.touch_context(current.context_id, accessed)
            current = current.model_copy(update={"last_accessed": accessed})

        messages = await self._store.list_messages(session_id, user_id)
        return ShortTermContextView(
            session_id=session_id,
            current=current,
            version_count=current.summary_version if current else 0,
            messages=messages,
            session_deleted=session.is_deleted,
        )

    async def list_context_versions(
        self,
        user_id: str,
        session_id: str,
        limit: int | None = None,
    ) -> list[ShortTermContext]:
        """Return summary versions, newest first."""
        await self._owned_session(user_id, session_id)
        return await self._store.list_contexts(
            session_id, user_id, limit or self._version_list_limit
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_short_term_context(
        self,
        user_id: str,
        session_id: str,
        summary_text: str,
        key_topics: list[str] | None = None,
        message_count: int = 0,
        context_weight: float = 0.5,
        message_start_id: str | None = None,
        message_end_id: str | None = None,
    ) -> ShortTermContext:
        """Insert the next summary version for a session.

        Raises
        ------
        ValueError
            *context_weight* outside [0, 1] or blank *summary_text*.
        PersistenceError
            A concurrent writer took the same version number.
        """
        if not 0.0 <= context_weight <= 1.0:
            raise ValueError("context_weight must be between 0 and 1")
        if not summary_text or not summary_text.strip():
            raise ValueError("summary_text must not be empty")
        await self._owned_session(user_id, session_id)

        embedding: list[float] | None
        try:
            embedding = await self._embedder.embed_single(summary_text)
        except EmbeddingError as exc:
            logger.warning("summary_embedding_failed", session_id=session_id, error=str(exc))
            embedding = None

        version = await self._store.max_context_version(session_id, user_id) + 1
        now = utc_now()
        context = ShortTermContext(
            context_id=str(uuid.uuid4()),
            user_id=user_id,
            session_id=session_id,
            summary_version=version,
            summary_text=summary_text,
            key_topics=key_topics or [],
            message_count=message_count,
            message_start_id=message_start_id,
            message_end_id=message_end_id,
            context_weight=context_weight,
            embedding=embedding,
            created_at=now,
            last_accessed=now,
        )
        try:
            await self._store.insert_context(context)
        except PersistenceError:
            logger.warning("context_version_conflict", session_id=session_id, version=version)
            raise

        logger.info(
            "short_term_context_saved",
            session_id=session_id,
            version=version,
            topics=len(context.key_topics),
            has_embedding=embedding is not None,
        )
        return context

    async def refresh_summary(self, user_id: str, session_id: str) -> ShortTermContext | None:
        """Generate a new summary when enough new messages have arrived.

        Returns ``None`` when the session has fewer than ``min_messages``
        messages, or fewer than ``regenerate_after`` messages arrived since
        the current summary.
        """
        await self._owned_session(user_id, session_id)
        total = await self._store.count_messages(session_id, user_id)
        if total < self._min_messages:
            return None

        current = await self._store.latest_context(session_id, user_id)
        if current is not None and total - current.message_count < self._regenerate_after:
            logger.debug(
                "summary_still_current",
                session_id=session_id,
                covered=current.message_count,
                total=total,
            )
            return None

        messages = await self._store.list_messages(session_id, user_id, limit=self._summary_window)
        summary_text = await self._generate_summary_text(messages)
        return await self.upsert_short_term_context(
            user_id,
            session_id,
            summary_text,
            key_topics=extract_key_topics(summary_text, messages, self._max_key_topics),
            message_count=total,
            context_weight=GENERATED_SUMMARY_WEIGHT,
            message_start_id=messages[0].message_id,
            message_end_id=messages[-1].message_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _generate_summary_text(self, messages: list[Message]) -> str:
        if self._llm is None:
            return fallback_summary(messages)
        transcript = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
        try:
            summary = await self._llm.complete(
                _SUMMARY_SYSTEM_PROMPT,
                f"Please summarize this conversation:\n\n{transcript}",
            )
        except LLMError as exc:
            logger.warning("summary_generation_fallback", error=str(exc))
            return fallback_summary(messages)
        return summary.strip() or fallback_summary(messages)

    async def _owned_session(self, user_id: str, session_id: str) -> Session:
        session = await self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        if session.user_id != user_id:
            raise AuthorizationError("Not authorized to access this session")
        return session
