"""Unit tests for ContextManager: versioned summaries and refresh policy."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from docmem.interfaces.llm_provider import ILLMProvider
from docmem.models.conversation import Message, MessageRole
from docmem.providers.store.sqlite_conversation_store import SQLiteConversationStore
from docmem.services.context_manager import (
    ContextManager,
    extract_key_topics,
    fallback_summary,
)
from docmem.services.session_service import SessionService
from docmem.utils.errors import AuthorizationError, LLMError, NotFoundError
from tests.conftest import FailingEmbeddingProvider, MockEmbeddingProvider


@pytest.fixture
def sessions(
    conversation_store: SQLiteConversationStore,
    mock_embedding_provider: MockEmbeddingProvider,
) -> SessionService:
    return SessionService(conversation_store, mock_embedding_provider)


@pytest.fixture
def manager(
    conversation_store: SQLiteConversationStore,
    mock_embedding_provider: MockEmbeddingProvider,
) -> ContextManager:
    return ContextManager(conversation_store, mock_embedding_provider)


def _msg(content: str, role: MessageRole = MessageRole.USER) -> Message:
    return Message(message_id="m", session_id="s", user_id="u", role=role, content=content)


async def _chat(sessions: SessionService, session_id: str, count: int, user_id: str = "u1") -> None:
    for i in range(count):
        role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
        await sessions.add_message(user_id, session_id, role, f"Message {i} about team leadership.")


class TestVersions:
    @pytest.mark.asyncio
    async def test_each_upsert_adds_a_version(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")

        first = await manager.upsert_short_term_context("u1", session.session_id, "First summary")
        second = await manager.upsert_short_term_context(
            "u1", session.session_id, "Second summary", key_topics=["team"], message_count=4
        )

        assert (first.summary_version, second.summary_version) == (1, 2)
        assert second.embedding is not None

        view = await manager.get_short_term_context("u1", session.session_id)
        assert view.current.context_id == second.context_id
        assert view.version_count == 2

        versions = await manager.list_context_versions("u1", session.session_id)
        assert [v.summary_version for v in versions] == [2, 1]
        assert versions[1].summary_text == "First summary"

    @pytest.mark.asyncio
    async def test_view_before_any_summary(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")
        await _chat(sessions, session.session_id, 2)

        view = await manager.get_short_term_context("u1", session.session_id)

        assert view.current is None
        assert view.version_count == 0
        assert [m.content for m in view.messages] == [
            "Message 0 about team leadership.",
            "Message 1 about team leadership.",
        ]

    @pytest.mark.asyncio
    async def test_read_touches_last_accessed(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")
        saved = await manager.upsert_short_term_context("u1", session.session_id, "Summary")

        view = await manager.get_short_term_context("u1", session.session_id)
        assert view.current.last_accessed >= saved.last_accessed

    @pytest.mark.asyncio
    async def test_soft_deleted_session_context_still_readable(
        self, sessions: SessionService, manager: ContextManager
    ) -> None:
        session = await sessions.create_session("u1")
        await manager.upsert_short_term_context("u1", session.session_id, "Before deletion")
        await sessions.soft_delete_session("u1", session.session_id)

        view = await manager.get_short_term_context("u1", session.session_id)

        assert view.session_deleted is True
        assert view.current.summary_text == "Before deletion"
        assert session.session_id not in [s.session_id for s in await sessions.list_active_sessions("u1")]

    @pytest.mark.asyncio
    async def test_validation(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")
        with pytest.raises(ValueError):
            await manager.upsert_short_term_context("u1", session.session_id, "x", context_weight=1.5)
        with pytest.raises(ValueError):
            await manager.upsert_short_term_context("u1", session.session_id, "   ")

    @pytest.mark.asyncio
    async def test_ownership_and_missing_session(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")
        with pytest.raises(AuthorizationError):
            await manager.get_short_term_context("u2", session.session_id)
        with pytest.raises(NotFoundError):
            await manager.get_short_term_context("u1", "missing")

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_without_vector(
        self, conversation_store: SQLiteConversationStore, sessions: SessionService
    ) -> None:
        session = await sessions.create_session("u1")
        manager = ContextManager(conversation_store, FailingEmbeddingProvider())

        context = await manager.upsert_short_term_context("u1", session.session_id, "Summary")
        assert context.embedding is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_too_few_messages(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")
        await _chat(sessions, session.session_id, 2)

        assert await manager.refresh_summary("u1", session.session_id) is None

    @pytest.mark.asyncio
    async def test_fallback_summary_without_llm(self, sessions: SessionService, manager: ContextManager) -> None:
        session = await sessions.create_session("u1")
        await _chat(sessions, session.session_id, 3)

        context = await manager.refresh_summary("u1", session.session_id)

        assert context.summary_version == 1
        assert context.message_count == 3
        assert context.context_weight == 1.0
        assert "3 messages exchanged" in context.summary_text
        assert context.key_topics == ["leadership", "team"]

    @pytest.mark.asyncio
    async def test_regenerates_only_after_enough_new_messages(
        self, sessions: SessionService, manager: ContextManager
    ) -> None:
        session = await sessions.create_session("u1")
        await _chat(sessions, session.session_id, 3)
        await manager.refresh_summary("u1", session.session_id)

        await _chat(sessions, session.session_id, 2)
        assert await manager.refresh_summary("u1", session.session_id) is None

        await _chat(sessions, session.session_id, 1)
        refreshed = await manager.refresh_summary("u1", session.session_id)
        assert refreshed.summary_version == 2
        assert refreshed.message_count == 6

    @pytest.mark.asyncio
    async def test_llm_summary_used(
        self,
        conversation_store: SQLiteConversationStore,
        mock_embedding_provider: MockEmbeddingProvider,
        mock_llm_provider: ILLMProvider,
        sessions: SessionService,
    ) -> None:
        session = await sessions.create_session("u1")
        await _chat(sessions, session.session_id, 3)
        manager = ContextManager(conversation_store, mock_embedding_provider, llm=mock_llm_provider)

        context = await manager.refresh_summary("u1", session.session_id)

        assert context.summary_text == "The user asked about team leadership."
        prompt = mock_llm_provider.complete.call_args.args[1]
        assert "user: Message 0 about team leadership." in prompt

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back(
        self,
        conversation_store: SQLiteConversationStore,
        mock_embedding_provider: MockEmbeddingProvider,
        mock_llm_provider: ILLMProvider,
        sessions: SessionService,
    ) -> None:
        mock_llm_provider.complete = AsyncMock(side_effect=LLMError("rate limited"))
        session = await sessions.create_session("u1")
        await _chat(sessions, session.session_id, 3)
        manager = ContextManager(conversation_store, mock_embedding_provider, llm=mock_llm_provider)

        context = await manager.refresh_summary("u1", session.session_id)
        assert context.summary_text.startswith("Conversation covered:")


class TestSummaryHelpers:
    def test_fallback_summary_uses_first_user_sentences(self) -> None:
        messages = [
            _msg("How do I run a retro? It keeps going long."),
            _msg("Try a timebox.", MessageRole.ASSISTANT),
            _msg("What about remote teams!"),
        ]
        summary = fallback_summary(messages)

        assert summary.startswith("Conversation covered: How do I run a retro, What about remote teams.")
        assert "3 messages exchanged" in summary

    def test_fallback_summary_without_user_messages(self) -> None:
        assert "no user messages" in fallback_summary([_msg("hi", MessageRole.ASSISTANT)])

    def test_key_topics_in_keyword_order_and_capped(self) -> None:
        text = "Feedback on my presentation, team strategy and a career promotion for leadership."
        topics = extract_key_topics(text, [], max_topics=3)
        assert topics == ["leadership", "team", "strategy"]
