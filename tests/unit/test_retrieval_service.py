"""Unit tests for RetrievalService: threshold gating, text fallback, scoping."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from docmem.interfaces.conversation_store import IConversationStore
from docmem.interfaces.memory_store import IMemoryStore
from docmem.models.conversation import Message, MessageRole, Session, ShortTermContext
from docmem.models.document import Chunk, Document, DocumentStatus, utc_now
from docmem.models.memory import Memory
from docmem.models.retrieval import SearchMode, SearchQuery, SearchScope, SearchTarget
from docmem.providers.store.sqlite_conversation_store import SQLiteConversationStore
from docmem.providers.store.sqlite_document_store import SQLiteDocumentStore
from docmem.providers.store.sqlite_memory_store import SQLiteMemoryStore
from docmem.services.retrieval_service import RetrievalService, relevance_score
from docmem.utils.errors import (
    AuthorizationError,
    InvalidScopeError,
    PersistenceError,
    RetrievalError,
)
from tests.conftest import FailingEmbeddingProvider, MockEmbeddingProvider, hash_to_vector

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def retrieval(
    mock_embedding_provider: MockEmbeddingProvider,
    memory_store: SQLiteMemoryStore,
    conversation_store: SQLiteConversationStore,
    document_store: SQLiteDocumentStore,
) -> RetrievalService:
    return RetrievalService(
        embedding_provider=mock_embedding_provider,
        memory_store=memory_store,
        conversation_store=conversation_store,
        document_store=document_store,
    )


async def _add_memory(store: SQLiteMemoryStore, memory_id: str, title: str, content: str, user_id: str = "u1") -> Memory:
    memory = Memory(memory_id=memory_id, user_id=user_id, title=title, content=content)
    memory = memory.model_copy(update={"embedding": hash_to_vector(memory.embedding_text())})
    await store.insert_memory(memory)
    return memory


async def _add_message(
    store: SQLiteConversationStore,
    session_id: str,
    message_id: str,
    content: str,
    user_id: str = "u1",
) -> Message:
    if await store.get_session(session_id) is None:
        await store.insert_session(Session(session_id=session_id, user_id=user_id))
    message = Message(
        message_id=message_id,
        session_id=session_id,
        user_id=user_id,
        role=MessageRole.USER,
        content=content,
        embedding=hash_to_vector(content),
    )
    await store.insert_message(message)
    return message


async def _add_completed_document(store: SQLiteDocumentStore, document_id: str, texts: list[str]) -> None:
    await store.insert_document(
        Document(
            document_id=document_id,
            user_id="u1",
            filename=f"{document_id}.txt",
            media_type="text/plain",
            storage_locator=f"u1/{document_id}",
            status=DocumentStatus.COMPLETED,
        )
    )
    await store.insert_chunks([
        Chunk(
            chunk_id=f"{document_id}-{i}",
            document_id=document_id,
            chunk_index=i,
            content=text,
            embedding=hash_to_vector(text),
        )
        for i, text in enumerate(texts)
    ])


# ---------------------------------------------------------------------------
# Memory / message search
# ---------------------------------------------------------------------------


class TestSearchMemories:
    @pytest.mark.asyncio
    async def test_vector_hits_pass_threshold(
        self, retrieval: RetrievalService, memory_store: SQLiteMemoryStore
    ) -> None:
        target = await _add_memory(memory_store, "m1", "Leadership", "Lead by example")
        await _add_memory(memory_store, "m2", "Cooking", "Salt the pasta water")

        result = await retrieval.search_memories(
            SearchScope(user_id="u1"),
            SearchQuery(vector=hash_to_vector(target.embedding_text())),
            search_type=SearchTarget.MEMORIES,
        )

        assert result.search_mode == SearchMode.VECTOR
        assert [m.memory_id for m in result.memories] == ["m1"]
        assert all(m.similarity >= 0.7 for m in result.memories)
        assert result.search_type == SearchTarget.MEMORIES
        assert result.messages == []

    @pytest.mark.asyncio
    async def test_text_fallback_when_no_vector_passes(
        self, retrieval: RetrievalService, memory_store: SQLiteMemoryStore
    ) -> None:
        await _add_memory(memory_store, "m1", "Leadership", "Lead by example")
        await _add_memory(memory_store, "m2", "Cooking", "Salt the pasta water")

        result = await retrieval.search_memories(
            SearchScope(user_id="u1"),
            SearchQuery(text="leadership"),
            search_type=SearchTarget.MEMORIES,
        )

        assert result.search_mode == SearchMode.TEXT_FALLBACK
        assert result.query_used == "text_search"
        assert [m.memory_id for m in result.memories] == ["m1"]
        assert result.memories[0].similarity is None

    @pytest.mark.asyncio
    async def test_fallback_when_embedding_unavailable(
        self,
        memory_store: SQLiteMemoryStore,
        conversation_store: SQLiteConversationStore,
        document_store: SQLiteDocumentStore,
    ) -> None:
        await _add_memory(memory_store, "m1", "Leadership", "Lead by example")
        service = RetrievalService(
            FailingEmbeddingProvider(), memory_store, conversation_store, document_store
        )

        result = await service.search_memories(SearchScope(user_id="u1"), SearchQuery(text="LEAD BY"))

        assert result.search_mode == SearchMode.TEXT_FALLBACK
        assert [m.memory_id for m in result.memories] == ["m1"]

    @pytest.mark.asyncio
    async def test_empty_query_returns_nothing(
        self, retrieval: RetrievalService, memory_store: SQLiteMemoryStore
    ) -> None:
        await _add_memory(memory_store, "m1", "Leadership", "Lead by example")

        for query in (SearchQuery(), SearchQuery(text="   ")):
            result = await retrieval.search_memories(SearchScope(user_id="u1"), query)
            assert result.search_mode == SearchMode.NONE
            assert result.total_results == 0

    @pytest.mark.asyncio
    async def test_no_match_anywhere_is_mode_none(
        self, retrieval: RetrievalService, memory_store: SQLiteMemoryStore
    ) -> None:
        await _add_memory(memory_store, "m1", "Leadership", "Lead by example")

        result = await retrieval.search_memories(SearchScope(user_id="u1"), SearchQuery(text="astronomy"))
        assert result.search_mode == SearchMode.NONE
        assert result.memories == [] and result.messages == []

    @pytest.mark.asyncio
    async def test_both_returns_two_separate_lists(
        self,
        retrieval: RetrievalService,
        memory_store: SQLiteMemoryStore,
        conversation_store: SQLiteConversationStore,
    ) -> None:
        await _add_memory(memory_store, "m1", "Planning", "quarterly planning")
        await _add_message(conversation_store, "s1", "msg1", "quarterly planning")

        result = await retrieval.search_memories(
            SearchScope(user_id="u1"),
            SearchQuery(text="quarterly planning"),
            search_type=SearchTarget.BOTH,
        )

        assert result.search_mode == SearchMode.VECTOR
        assert [m.message_id for m in result.messages] == ["msg1"]
        # Memory embeddings cover title + content, so the bare phrase only
        # matches the message by vector.
        assert result.memories == []
        assert result.total_results == 1

    @pytest.mark.asyncio
    async def test_session_filter_applies_to_messages(
        self, retrieval: RetrievalService, conversation_store: SQLiteConversationStore
    ) -> None:
        await _add_message(conversation_store, "s1", "a", "standup notes")
        await _add_message(conversation_store, "s2", "b", "standup notes")

        result = await retrieval.search_memories(
            SearchScope(user_id="u1", session_id="s2"),
            SearchQuery(text="standup notes"),
            search_type=SearchTarget.MESSAGES,
        )
        assert [m.session_id for m in result.messages] == ["s2"]

    @pytest.mark.asyncio
    async def test_other_users_data_is_invisible(
        self,
        retrieval: RetrievalService,
        memory_store: SQLiteMemoryStore,
        conversation_store: SQLiteConversationStore,
    ) -> None:
        foreign = await _add_memory(memory_store, "m9", "Leadership", "Lead by example", user_id="u2")
        await _add_message(conversation_store, "s9", "x", "Lead by example", user_id="u2")

        by_vector = await retrieval.search_memories(
            SearchScope(user_id="u1"), SearchQuery(vector=foreign.embedding), threshold=0.0
        )
        by_text = await retrieval.search_memories(SearchScope(user_id="u1"), SearchQuery(text="lead"))

        assert by_vector.total_results == 0
        assert by_text.total_results == 0

    @pytest.mark.asyncio
    async def test_blank_owner_rejected(self, retrieval: RetrievalService) -> None:
        with pytest.raises(InvalidScopeError):
            await retrieval.search_memories(SearchScope(user_id="  "), SearchQuery(text="x"))

    @pytest.mark.asyncio
    async def test_single_failing_sub_search_degrades(
        self,
        mock_embedding_provider: MockEmbeddingProvider,
        conversation_store: SQLiteConversationStore,
        document_store: SQLiteDocumentStore,
    ) -> None:
        await _add_message(conversation_store, "s1", "msg1", "budget review")
        broken = MagicMock(spec=IMemoryStore)
        broken.match_memories = AsyncMock(side_effect=PersistenceError("db locked"))
        broken.search_memories_text = AsyncMock(side_effect=PersistenceError("db locked"))
        service = RetrievalService(mock_embedding_provider, broken, conversation_store, document_store)

        result = await service.search_memories(SearchScope(user_id="u1"), SearchQuery(text="budget review"))

        assert result.memories == []
        assert [m.message_id for m in result.messages] == ["msg1"]

    @pytest.mark.asyncio
    async def test_all_sub_searches_failing_raises(
        self,
        mock_embedding_provider: MockEmbeddingProvider,
        document_store: SQLiteDocumentStore,
    ) -> None:
        memories = MagicMock(spec=IMemoryStore)
        memories.match_memories = AsyncMock(side_effect=PersistenceError("down"))
        memories.search_memories_text = AsyncMock(side_effect=PersistenceError("down"))
        conversations = MagicMock(spec=IConversationStore)
        conversations.match_messages = AsyncMock(side_effect=PersistenceError("down"))
        conversations.search_messages_text = AsyncMock(side_effect=PersistenceError("down"))
        service = RetrievalService(mock_embedding_provider, memories, conversations, document_store)

        with pytest.raises(RetrievalError):
            await service.search_memories(SearchScope(user_id="u1"), SearchQuery(text="anything"))


# ---------------------------------------------------------------------------
# Document search
# ---------------------------------------------------------------------------


class TestSearchDocuments:
    @pytest.mark.asyncio
    async def test_vector_then_fallback(
        self, retrieval: RetrievalService, document_store: SQLiteDocumentStore
    ) -> None:
        await _add_completed_document(
            document_store, "d1", ["Onboarding checklist for new hires.", "Security training is mandatory."]
        )

        exact = await retrieval.search_documents(
            SearchScope(user_id="u1"), SearchQuery(text="Security training is mandatory.")
        )
        partial = await retrieval.search_documents(SearchScope(user_id="u1"), SearchQuery(text="onboarding"))

        assert exact.search_mode == SearchMode.VECTOR
        assert [c.chunk_index for c in exact.chunks] == [1]
        assert partial.search_mode == SearchMode.TEXT_FALLBACK
        assert [c.chunk_index for c in partial.chunks] == [0]

    @pytest.mark.asyncio
    async def test_vector_only_query_without_match_is_none(
        self, retrieval: RetrievalService, document_store: SQLiteDocumentStore
    ) -> None:
        await _add_completed_document(document_store, "d1", ["Some content."])
        result = await retrieval.search_documents(
            SearchScope(user_id="u1"), SearchQuery(vector=hash_to_vector("unrelated"))
        )
        assert result.search_mode == SearchMode.NONE
        assert result.total_results == 0


# ---------------------------------------------------------------------------
# Context composition
# ---------------------------------------------------------------------------


class TestBuildContext:
    @pytest.mark.asyncio
    async def test_composes_all_sources(
        self,
        retrieval: RetrievalService,
        memory_store: SQLiteMemoryStore,
        conversation_store: SQLiteConversationStore,
        document_store: SQLiteDocumentStore,
    ) -> None:
        query = "hiring plan"
        await _add_message(conversation_store, "current", "c1", "let's talk about hiring")
        await conversation_store.insert_context(
            ShortTermContext(
                context_id="ctx1",
                user_id="u1",
                session_id="current",
                summary_version=1,
                summary_text="Discussed hiring.",
            )
        )
        await _add_message(conversation_store, "older", "o1", query)
        await _add_message(conversation_store, "current", "c2", query)
        await _add_memory(memory_store, "m1", "Hiring", "hiring plan for Q3")
        await _add_completed_document(document_store, "d1", [query])

        answer = await retrieval.build_context(
            SearchScope(user_id="u1", session_id="current"), SearchQuery(text=query)
        )

        assert answer.short_term.summary_text == "Discussed hiring."
        assert [m.message_id for m in answer.recent_messages] == ["c1", "c2"]
        # History excludes the session being answered.
        assert [s.message.message_id for s in answer.relevant_history] == ["o1"]
        assert [m.memory_id for m in answer.memories] == ["m1"]
        assert [c.document_id for c in answer.chunks] == ["d1"]
        assert answer.search_mode == SearchMode.VECTOR
        assert all(answer.context_used.values())

    @pytest.mark.asyncio
    async def test_nothing_relevant(self, retrieval: RetrievalService) -> None:
        answer = await retrieval.build_context(SearchScope(user_id="u1"), SearchQuery(text="nothing"))

        assert answer.search_mode == SearchMode.NONE
        assert not any(answer.context_used.values())

    @pytest.mark.asyncio
    async def test_foreign_session_rejected(
        self, retrieval: RetrievalService, conversation_store: SQLiteConversationStore
    ) -> None:
        await _add_message(conversation_store, "theirs", "t1", "private", user_id="u2")
        with pytest.raises(AuthorizationError):
            await retrieval.build_context(
                SearchScope(user_id="u1", session_id="theirs"), SearchQuery(text="private")
            )


class TestRelevanceScore:
    def test_recent_messages_rank_higher(self) -> None:
        now = utc_now()
        fresh = relevance_score(0.8, now, now)
        stale = relevance_score(0.8, now - timedelta(days=60), now)

        assert fresh == pytest.approx(0.8 * 0.8 + 0.2)
        assert stale < fresh
