"""Retrieval over memories, conversation messages and document chunks.

Search policy
-------------
1. **Vector** -- use the caller's vector, or embed the query text.  An
   embedding failure is not an error; the search simply has no vector.
2. **Threshold gating** -- each requested sub-search (memories, messages,
   chunks) returns only rows with ``similarity >= threshold``, best first,
   ties in insertion order, capped at ``limit``.
3. **Text fallback** -- when there is no vector, or the vector
   sub-searches found nothing, and the query text is not blank, run a
   case-insensitive substring match instead.  Hits carry no similarity.
4. **Nothing** -- otherwise return an empty result with
   ``search_mode="none"``.  An empty query never "matches everything".

Memories and messages are two independent lists in the response and are
never merged into one ranking.

A sub-search whose store raises degrades to an empty list.  Only when
every attempted sub-search failed does the call raise
:class:`~docmem.utils.errors.RetrievalError`.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from docmem.models.document import utc_now
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
from docmem.utils.errors import (
    AuthorizationError,
    DocMemError,
    EmbeddingError,
    InvalidScopeError,
    RetrievalError,
)

if TYPE_CHECKING:
    from docmem.interfaces.conversation_store import IConversationStore
    from docmem.interfaces.document_store import IDocumentStore
    from docmem.interfaces.embedding_provider import IEmbeddingProvider
    from docmem.interfaces.memory_store import IMemoryStore
    from docmem.models.conversation import Message, ShortTermContext

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")

DEFAULT_MEMORY_THRESHOLD = 0.7
DEFAULT_MEMORY_LIMIT = 10
DEFAULT_DOCUMENT_THRESHOLD = 0.5
DEFAULT_DOCUMENT_LIMIT = 5
DEFAULT_HISTORY_LIMIT = 5
DEFAULT_RECENT_MESSAGE_LIMIT = 10

# Relevance of a history message = similarity * 0.8 + recency * 0.2,
# where recency decays as exp(-age_days / 30).
_SIMILARITY_WEIGHT = 0.8
_RECENCY_WEIGHT = 0.2
_RECENCY_DECAY_DAYS = 30.0


def relevance_score(similarity: float, created_at: datetime, now: datetime | None = None) -> float:
    """Blend similarity with an exponential recency decay."""
    now = now or utc_now()
    age_days = max(0.0, (now - created_at).total_seconds() / 86400.0)
    recency = math.exp(-age_days / _RECENCY_DECAY_DAYS)
    return similarity * _SIMILARITY_WEIGHT + recency * _RECENCY_WEIGHT


class _SubSearch:
    """Outcome of one guarded sub-search."""

    __slots__ = ("hits", "ok")

    def __init__(self, hits: list[Any], ok: bool) -> None:
        self.hits = hits
        self.ok = ok


class RetrievalService:
    """Vector search with threshold gating and a lexical fallback.

    Parameters
    ----------
    embedding_provider:
        Embeds query text on the fly.
    memory_store, conversation_store, document_store:
        Record stores exposing similarity and substring primitives.
    memory_threshold, memory_limit:
        Defaults for :meth:`search_memories`.
    document_threshold, document_limit:
        Defaults for :meth:`search_documents`.
    history_limit, recent_message_limit:
        Sizes used by :meth:`build_context`.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        memory_store: IMemoryStore,
        conversation_store: IConversationStore,
        document_store: IDocumentStore,
        memory_threshold: float = DEFAULT_MEMORY_THRESHOLD,
        memory_limit: int = DEFAULT_MEMORY_LIMIT,
        document_threshold: float = DEFAULT_DOCUMENT_THRESHOLD,
        document_limit: int = DEFAULT_DOCUMENT_LIMIT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        recent_message_limit: int = DEFAULT_RECENT_MESSAGE_LIMIT,
    ) -> None:
        self._embedder = embedding_provider
        self._memories = memory_store
        self._conversations = conversation_store
        self._documents = document_store
        self._memory_threshold = memory_threshold
        self._memory_limit = memory_limit
        self._document_threshold = document_threshold
        self._document_limit = document_limit
        self._history_limit = history_limit
        self._recent_message_limit = recent_message_limit

    # ------------------------------------------------------------------
    # Memory / message search
    # ------------------------------------------------------------------

    async def search_memories(
        self,
        scope: SearchScope,
        query: SearchQuery,
        search_type: SearchTarget = SearchTarget.BOTH,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> MemorySearchResponse:
        """Search long-term memories and/or conversation messages.

        Raises
        ------
        InvalidScopeError
            *scope* has no owner.
        RetrievalError
            Every attempted sub-search failed.
        """
        self._validate_scope(scope)
        threshold = self._memory_threshold if threshold is None else threshold
        limit = self._memory_limit if limit is None else limit
        user_id = scope.user_id

        attempted = 0
        succeeded = 0
        vector = await self._resolve_vector(query)

        if vector is not None:
            memories, messages = await asyncio.gather(
                self._guard(
                    "memories_vector",
                    lambda: self._memories.match_memories(user_id, vector, threshold, limit),
                    enabled=search_type.includes_memories,
                ),
                self._guard(
                    "messages_vector",
                    lambda: self._conversations.match_messages(
                        user_id, vector, threshold, limit, session_id=scope.session_id
                    ),
                    enabled=search_type.includes_messages,
                ),
            )
            attempted, succeeded = self._tally(search_type, memories, messages)
            if memories.hits or messages.hits:
                return self._memory_response(memories.hits, messages.hits, search_type, SearchMode.VECTOR)

        if query.has_text:
            text = query.text.strip()
            logger.info(
                "memory_search_fallback",
                user_id=user_id,
                had_vector=vector is not None,
                search_type=search_type.value,
            )
            memories, messages = await asyncio.gather(
                self._guard(
                    "memories_text",
                    lambda: self._memories.search_memories_text(user_id, text, limit),
                    enabled=search_type.includes_memories,
                ),
                self._guard(
                    "messages_text",
                    lambda: self._conversations.search_messages_text(
                        user_id, text, limit, session_id=scope.session_id
                    ),
                    enabled=search_type.includes_messages,
                ),
            )
            fb_attempted, fb_succeeded = self._tally(search_type, memories, messages)
            attempted += fb_attempted
            succeeded += fb_succeeded
            self._raise_if_all_failed(attempted, succeeded)
            if memories.hits or messages.hits:
                return self._memory_response(
                    memories.hits, messages.hits, search_type, SearchMode.TEXT_FALLBACK
                )
        else:
            self._raise_if_all_failed(attempted, succeeded)

        return self._memory_response([], [], search_type, SearchMode.NONE)

    # ------------------------------------------------------------------
    # Document search
    # ------------------------------------------------------------------

    async def search_documents(
        self,
        scope: SearchScope,
        query: SearchQuery,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> DocumentSearchResponse:
        """Search chunks of the user's completed, non-deleted documents."""
        self._validate_scope(scope)
        threshold = self._document_threshold if threshold is None else threshold
        limit = self._document_limit if limit is None else limit
        user_id = scope.user_id

        attempted = 0
        vector = await self._resolve_vector(query)
        if vector is not None:
            attempted += 1
            result = await self._guard(
                "chunks_vector",
                lambda: self._documents.match_chunks(
                    user_id, vector, threshold, limit, document_id=scope.document_id
                ),
            )
            if result.hits:
                return self._document_response(result.hits, SearchMode.VECTOR)
            vector_ok = result.ok
        else:
            vector_ok = False

        if query.has_text:
            attempted += 1
            logger.info("document_search_fallback", user_id=user_id, had_vector=vector is not None)
            result = await self._guard(
                "chunks_text",
                lambda: self._documents.search_chunks_text(
                    user_id, query.text.strip(), limit, document_id=scope.document_id
                ),
            )
            self._raise_if_all_failed(attempted, int(vector_ok) + int(result.ok))
            if result.hits:
                return self._document_response(result.hits, SearchMode.TEXT_FALLBACK)
        else:
            self._raise_if_all_failed(attempted, int(vector_ok))

        return self._document_response([], SearchMode.NONE)

    # ------------------------------------------------------------------
    # Context composition
    # ------------------------------------------------------------------

    async def build_context(self, scope: SearchScope, query: SearchQuery) -> ContextAnswer:
        """Gather everything relevant to *query* for one user and session.

        * short-term summary + recent messages of ``scope.session_id``
        * relevant history from the user's *other* sessions, ranked by
          similarity blended with recency
        * relevant memories (vector or text fallback)
        * relevant document chunks (vector or text fallback)

        Source failures degrade to empty sections; ``context_used`` tells
        the caller which sections contributed.
        """
        self._validate_scope(scope)
        user_id = scope.user_id

        short_term: ShortTermContext | None = None
        recent: list[Message] = []
        if scope.session_id:
            session = await self._conversations.get_session(scope.session_id)
            if session is not None:
                if session.user_id != user_id:
                    raise AuthorizationError("Not authorized to access this session")
                short_term = await self._conversations.latest_context(scope.session_id, user_id)
                recent = await self._conversations.list_messages(
                    scope.session_id, user_id, limit=self._recent_message_limit
                )

        vector = await self._resolve_vector(query)
        resolved = SearchQuery(text=query.text, vector=vector)

        history: list[ScoredMessage] = []
        if vector is not None:
            matched = await self._guard(
                "history_vector",
                lambda: self._conversations.match_messages(
                    user_id,
                    vector,
                    self._memory_threshold,
                    self._history_limit,
                    exclude_session_id=scope.session_id,
                ),
            )
            now = utc_now()
            history = sorted(
                (
                    ScoredMessage(
                        message=hit,
                        relevance_score=relevance_score(hit.similarity or 0.0, hit.created_at, now),
                    )
                    for hit in matched.hits
                ),
                key=lambda scored: scored.relevance_score,
                reverse=True,
            )

        memory_scope = SearchScope(user_id=user_id)
        try:
            memories = await self.search_memories(
                memory_scope, resolved, search_type=SearchTarget.MEMORIES
            )
        except RetrievalError:
            memories = self._memory_response([], [], SearchTarget.MEMORIES, SearchMode.NONE)
        try:
            chunks = await self.search_documents(
                SearchScope(user_id=user_id, document_id=scope.document_id), resolved
            )
        except RetrievalError:
            chunks = self._document_response([], SearchMode.NONE)

        mode = SearchMode.NONE
        for candidate in (memories.search_mode, chunks.search_mode):
            if candidate == SearchMode.VECTOR or (
                candidate == SearchMode.TEXT_FALLBACK and mode == SearchMode.NONE
            ):
                mode = candidate
        if history and mode == SearchMode.NONE:
            mode = SearchMode.VECTOR

        answer = ContextAnswer(
            short_term=short_term,
            recent_messages=recent,
            relevant_history=history,
            memories=memories.memories,
            chunks=chunks.chunks,
            search_mode=mode,
            context_used={
                "short_term_summary": short_term is not None,
                "recent_messages": bool(recent),
                "relevant_history": bool(history),
                "memories": bool(memories.memories),
                "documents": bool(chunks.chunks),
            },
        )
        logger.info(
            "context_built",
            user_id=user_id,
            session_id=scope.session_id,
            search_mode=mode.value,
            **{f"used_{k}": v for k, v in answer.context_used.items()},
        )
        return answer

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_scope(scope: SearchScope) -> None:
        if not scope.user_id or not scope.user_id.strip():
            raise InvalidScopeError()

    async def _resolve_vector(self, query: SearchQuery) -> list[float] | None:
        if query.vector:
            return list(query.vector)
        if not query.has_text:
            return None
        try:
            return await self._embedder.embed_single(query.text.strip())
        except EmbeddingError as exc:
            logger.warning(
                "query_embedding_failed",
                provider=self._embedder.get_provider_name(),
                error=str(exc),
            )
            return None

    @staticmethod
    async def _guard(
        label: str,
        search: Callable[[], Awaitable[list[T]]],
        enabled: bool = True,
    ) -> _SubSearch:
        """Run a sub-search; a store failure becomes an empty, failed result."""
        if not enabled:
            return _SubSearch([], ok=True)
        try:
            return _SubSearch(list(await search()), ok=True)
        except DocMemError as exc:
            logger.warning("sub_search_failed", sub_search=label, error=str(exc))
            return _SubSearch([], ok=False)

    @staticmethod
    def _tally(search_type: SearchTarget, memories: _SubSearch, messages: _SubSearch) -> tuple[int, int]:
        attempted = succeeded = 0
        if search_type.includes_memories:
            attempted += 1
            succeeded += int(memories.ok)
        if search_type.includes_messages:
            attempted += 1
            succeeded += int(messages.ok)
        return attempted, succeeded

    @staticmethod
    def _raise_if_all_failed(attempted: int, succeeded: int) -> None:
        if attempted and not succeeded:
            raise RetrievalError("Every requested search failed")

    @staticmethod
    def _memory_response(
        memories: list[MemoryHit],
        messages: list[MessageHit],
        search_type: SearchTarget,
        mode: SearchMode,
    ) -> MemorySearchResponse:
        return MemorySearchResponse(
            memories=memories,
            messages=messages,
            total_results=len(memories) + len(messages),
            search_type=search_type,
            search_mode=mode,
            query_used="text_search" if mode == SearchMode.TEXT_FALLBACK else "vector_search",
        )

    @staticmethod
    def _document_response(chunks: list[ChunkHit], mode: SearchMode) -> DocumentSearchResponse:
        return DocumentSearchResponse(
            chunks=chunks,
            total_results=len(chunks),
            search_mode=mode,
            query_used="text_search" if mode == SearchMode.TEXT_FALLBACK else "vector_search",
        )
