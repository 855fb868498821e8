"""Unit tests for RetentionService: grace window, dry runs, blob failures."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docmem.models.conversation import Message, MessageRole, Session, ShortTermContext
from docmem.models.document import Chunk, Document, DocumentStatus, utc_now
from docmem.providers.store.sqlite_conversation_store import SQLiteConversationStore
from docmem.providers.store.sqlite_document_store import SQLiteDocumentStore
from docmem.services.retention_service import RetentionService
from tests.conftest import InMemoryBlobStore


@pytest.fixture
def retention(
    conversation_store: SQLiteConversationStore,
    document_store: SQLiteDocumentStore,
    blob_store: InMemoryBlobStore,
) -> RetentionService:
    return RetentionService(conversation_store, document_store, blob_store)


async def _deleted_session(store: SQLiteConversationStore, session_id: str, days_ago: int) -> None:
    await store.insert_session(
        Session(
            session_id=session_id,
            user_id="u1",
            is_active=False,
            deleted_at=utc_now() - timedelta(days=days_ago),
        )
    )
    await store.insert_message(
        Message(
            message_id=f"{session_id}-m",
            session_id=session_id,
            user_id="u1",
            role=MessageRole.USER,
            content="hello",
        )
    )
    await store.insert_context(
        ShortTermContext(
            context_id=f"{session_id}-c",
            user_id="u1",
            session_id=session_id,
            summary_version=1,
            summary_text="greeting",
        )
    )


async def _deleted_document(
    store: SQLiteDocumentStore,
    blobs: InMemoryBlobStore,
    document_id: str,
    days_ago: int,
) -> None:
    locator = f"u1/{document_id}/file.txt"
    blobs.objects[locator] = b"bytes"
    await store.insert_document(
        Document(
            document_id=document_id,
            user_id="u1",
            filename="file.txt",
            media_type="text/plain",
            storage_locator=locator,
            status=DocumentStatus.COMPLETED,
            deleted_at=utc_now() - timedelta(days=days_ago),
        )
    )
    await store.insert_chunks([
        Chunk(chunk_id=f"{document_id}-{i}", document_id=document_id, chunk_index=i, content="x")
        for i in range(2)
    ])


class TestSessionPurge:
    @pytest.mark.asyncio
    async def test_only_sessions_past_grace_window(
        self, retention: RetentionService, conversation_store: SQLiteConversationStore
    ) -> None:
        await _deleted_session(conversation_store, "expired", days_ago=45)
        await _deleted_session(conversation_store, "recent", days_ago=5)
        await conversation_store.insert_session(Session(session_id="live", user_id="u1"))

        report = await retention.purge_deleted_sessions(grace_days=30)

        assert report.session_ids == ["expired"]
        assert (report.messages_deleted, report.contexts_deleted) == (1, 1)
        assert await conversation_store.get_session("expired") is None
        assert await conversation_store.get_session("recent") is not None
        assert await conversation_store.get_session("live") is not None

    @pytest.mark.asyncio
    async def test_runs_in_batches_and_is_idempotent(
        self, retention: RetentionService, conversation_store: SQLiteConversationStore
    ) -> None:
        for i in range(5):
            await _deleted_session(conversation_store, f"s{i}", days_ago=60)

        first = await retention.purge_deleted_sessions(batch_size=2)
        second = await retention.purge_deleted_sessions(batch_size=2)

        assert first.sessions_deleted == 5
        assert second.sessions_deleted == 0

    @pytest.mark.asyncio
    async def test_dry_run_reports_next_batch_only(
        self, retention: RetentionService, conversation_store: SQLiteConversationStore
    ) -> None:
        for i in range(3):
            await _deleted_session(conversation_store, f"s{i}", days_ago=60)

        report = await retention.purge_deleted_sessions(batch_size=2, dry_run=True)

        assert report.dry_run
        assert report.sessions_deleted == 2
        assert report.messages_deleted == 2
        assert await conversation_store.get_session("s0") is not None

    @pytest.mark.asyncio
    async def test_rejects_bad_batch_size(self, retention: RetentionService) -> None:
        with pytest.raises(ValueError):
            await retention.purge_deleted_sessions(batch_size=0)


class TestDocumentPurge:
    @pytest.mark.asyncio
    async def test_purges_rows_chunks_and_blobs(
        self,
        retention: RetentionService,
        document_store: SQLiteDocumentStore,
        blob_store: InMemoryBlobStore,
    ) -> None:
        await _deleted_document(document_store, blob_store, "old", days_ago=40)
        await _deleted_document(document_store, blob_store, "new", days_ago=1)

        report = await retention.purge_deleted_documents(grace_days=30)

        assert report.document_ids == ["old"]
        assert report.chunks_deleted == 2
        assert report.blobs_failed == 0
        assert "u1/old/file.txt" not in blob_store.objects
        assert "u1/new/file.txt" in blob_store.objects
        assert await document_store.get_document("old") is None

    @pytest.mark.asyncio
    async def test_blob_failure_counted_and_row_still_purged(
        self,
        retention: RetentionService,
        document_store: SQLiteDocumentStore,
        blob_store: InMemoryBlobStore,
    ) -> None:
        await _deleted_document(document_store, blob_store, "old", days_ago=40)
        blob_store.fail_delete = True

        report = await retention.purge_deleted_documents()

        assert report.blobs_failed == 1
        assert report.documents_deleted == 1
        assert await document_store.get_document("old") is None

    @pytest.mark.asyncio
    async def test_dry_run_keeps_everything(
        self,
        retention: RetentionService,
        document_store: SQLiteDocumentStore,
        blob_store: InMemoryBlobStore,
    ) -> None:
        await _deleted_document(document_store, blob_store, "old", days_ago=40)

        report = await retention.purge_deleted_documents(dry_run=True)

        assert report.chunks_deleted == 2
        assert await document_store.get_document("old") is not None
        assert "u1/old/file.txt" in blob_store.objects


class TestContextPruning:
    @pytest.mark.asyncio
    async def test_keeps_newest_versions(
        self, retention: RetentionService, conversation_store: SQLiteConversationStore
    ) -> None:
        await conversation_store.insert_session(Session(session_id="s1", user_id="u1"))
        for version in range(1, 6):
            await conversation_store.insert_context(
                ShortTermContext(
                    context_id=f"c{version}",
                    user_id="u1",
                    session_id="s1",
                    summary_version=version,
                    summary_text=f"v{version}",
                )
            )

        assert await retention.prune_context_history(keep_latest=3) == 2
        assert await retention.prune_context_history(keep_latest=3) == 0
        remaining = await conversation_store.list_contexts("s1", "u1", limit=10)
        assert [c.summary_version for c in remaining] == [5, 4, 3]

    @pytest.mark.asyncio
    async def test_rejects_zero_keep(self, retention: RetentionService) -> None:
        with pytest.raises(ValueError):
            await retention.prune_context_history(keep_latest=0)
