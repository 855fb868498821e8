"""Retention: physical purge of soft-deleted rows after a grace window.

Normal request flow never removes data; it only marks sessions and
documents with ``deleted_at``.  This job is the single place where such
rows, and everything they own, are physically deleted:

* sessions deleted longer than ``grace_days`` ago, with their messages and
  short-term contexts
* documents deleted longer than ``grace_days`` ago, with their chunks and
  stored bytes
* old short-term context versions beyond the newest ``keep_latest`` per
  session

Every operation is idempotent; running it twice deletes nothing the
second time.  Work is done in batches so one run never holds a long
transaction.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field

from docmem.models.document import utc_now
from docmem.utils.errors import BlobStoreError

if TYPE_CHECKING:
    from docmem.interfaces.blob_store import IBlobStore
    from docmem.interfaces.conversation_store import IConversationStore
    from docmem.interfaces.document_store import IDocumentStore

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_GRACE_DAYS = 30
DEFAULT_BATCH_SIZE = 100
DEFAULT_KEEP_CONTEXT_VERSIONS = 3


class SessionPurgeReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    cutoff: datetime
    dry_run: bool = False
    sessions_deleted: int = 0
    messages_deleted: int = 0
    contexts_deleted: int = 0
    session_ids: list[str] = Field(default_factory=list)


class DocumentPurgeReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    cutoff: datetime
    dry_run: bool = False
    documents_deleted: int = 0
    chunks_deleted: int = 0
    blobs_failed: int = 0
    document_ids: list[str] = Field(default_factory=list)


class RetentionService:
    """Batched, idempotent purge of expired soft-deleted data."""

    def __init__(
        self,
        conversation_store: IConversationStore,
        document_store: IDocumentStore,
        blob_store: IBlobStore,
    ) -> None:
        self._conversations = conversation_store
        self._documents = document_store
        self._blobs = blob_store

    async def purge_deleted_sessions(
        self,
        grace_days: int = DEFAULT_GRACE_DAYS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> SessionPurgeReport:
        """Delete sessions soft-deleted more than *grace_days* ago.

        With *dry_run*, nothing is deleted; the report lists the next batch
        that would be purged, with the counts of children it owns.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        cutoff = (now or utc_now()) - timedelta(days=grace_days)

        session_ids: list[str] = []
        contexts_total = 0
        messages_total = 0
        while True:
            batch = await self._conversations.list_deleted_sessions(cutoff, batch_size)
            for session in batch:
                if dry_run:
                    contexts, messages = await self._conversations.count_session_children(
                        session.session_id
                    )
                else:
                    contexts, messages = await self._conversations.purge_session(session.session_id)
                session_ids.append(session.session_id)
                contexts_total += contexts
                messages_total += messages
            if dry_run or len(batch) < batch_size:
                break

        report = SessionPurgeReport(
            cutoff=cutoff,
            dry_run=dry_run,
            sessions_deleted=len(session_ids),
            messages_deleted=messages_total,
            contexts_deleted=contexts_total,
            session_ids=session_ids,
        )
        logger.info(
            "sessions_purged",
            dry_run=dry_run,
            grace_days=grace_days,
            sessions=report.sessions_deleted,
            messages=report.messages_deleted,
            contexts=report.contexts_deleted,
        )
        return report

    async def purge_deleted_documents(
        self,
        grace_days: int = DEFAULT_GRACE_DAYS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> DocumentPurgeReport:
        """Delete documents soft-deleted more than *grace_days* ago.

        Stored bytes are removed first.  A blob that cannot be deleted is
        counted in ``blobs_failed`` and the row is still purged; the bytes
        are unreachable once their row is gone.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        cutoff = (now or utc_now()) - timedelta(days=grace_days)

        document_ids: list[str] = []
        chunks_total = 0
        blobs_failed = 0
        while True:
            batch = await self._documents.list_deleted_documents(cutoff, batch_size)
            for document in batch:
                document_ids.append(document.document_id)
                if dry_run:
                    chunks_total += await self._documents.count_chunks(document.document_id)
                    continue
                try:
                    await self._blobs.delete(document.storage_locator)
                except BlobStoreError as exc:
                    blobs_failed += 1
                    logger.warning(
                        "document_blob_delete_failed",
                        document_id=document.document_id,
                        error=str(exc),
                    )
                chunks_total += await self._documents.purge_document(document.document_id)
            if dry_run or len(batch) < batch_size:
                break

        report = DocumentPurgeReport(
            cutoff=cutoff,
            dry_run=dry_run,
            documents_deleted=len(document_ids),
            chunks_deleted=chunks_total,
            blobs_failed=blobs_failed,
            document_ids=document_ids,
        )
        logger.info(
            "documents_purged",
            dry_run=dry_run,
            grace_days=grace_days,
            documents=report.documents_deleted,
            chunks=report.chunks_deleted,
            blobs_failed=blobs_failed,
        )
        return report

    async def prune_context_history(self, keep_latest: int = DEFAULT_KEEP_CONTEXT_VERSIONS) -> int:
        """Keep only the newest *keep_latest* summary versions per session."""
        if keep_latest < 1:
            raise ValueError("keep_latest must be at least 1")
        removed = await self._conversations.prune_contexts(keep_latest)
        logger.info("context_history_pruned", keep_latest=keep_latest, removed=removed)
        return removed
