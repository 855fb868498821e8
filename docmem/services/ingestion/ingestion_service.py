"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **download -> extract -> chunk -> embed -> store**.

The :class:`IngestionService` coordinates five collaborators (blob store,
content extractor, chunker, embedding batcher, document store) without any
of them knowing about each other.  All of them are injected via the
constructor so providers can be swapped without touching this class.

Status handling
---------------
Every status write goes through :meth:`Document.with_status`, which
enforces ``pending -> processing -> completed | failed``, and is written
with ``IDocumentStore.update_status``, which only applies while the stored
row still holds the expected prior status.  Two concurrent runs of one
document therefore cannot both leave ``pending``: the second raises
``InvalidStatusTransitionError`` before touching any chunk.  Chunks are
persisted batch by batch as their embeddings resolve; a run that fails
half-way leaves the already written batches in place for diagnostics, but
the document is marked ``failed`` and its chunks are never searchable
(search only covers ``completed`` documents).

Errors raised by a stage (extraction, blob download, persistence, zero
chunks) never escape :meth:`IngestionService.process_document`: they are
recorded on the document row.  Only caller mistakes escape: unknown
document, wrong owner, deleted document, or a document that is not
``pending``.
"""

from __future__ import annotations

import re
import time
import uuid
from typing import TYPE_CHECKING, Any

import structlog

from docmem.models.document import Chunk, Document, DocumentStatus, utc_now
from docmem.models.ingestion import IngestionPhase, IngestionResult
from docmem.services.ingestion.chunker import INLINE_UPLOAD_MAX_CHARS
from docmem.utils.errors import (
    AuthorizationError,
    DocMemError,
    IngestionError,
    LifecycleError,
    NotFoundError,
)

if TYPE_CHECKING:
    from docmem.interfaces.blob_store import IBlobStore
    from docmem.interfaces.document_store import IDocumentStore
    from docmem.pipeline.progress_tracker import ProgressTracker
    from docmem.services.ingestion.chunker import DocumentChunker
    from docmem.services.ingestion.embedding_batcher import EmbeddingBatcher
    from docmem.services.ingestion.extractors import ContentExtractor

logger = structlog.get_logger(logger_name=__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_filename(filename: str) -> str:
    """Reduce a caller-supplied file name to a single safe path segment."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_FILENAME_RE.sub("_", name).strip("._")
    return name or "upload"


class IngestionService:
    """Creates documents and runs them through the ingestion pipeline.

    Parameters
    ----------
    document_store:
        Persists document rows and chunk batches.
    blob_store:
        Holds the raw uploaded bytes.
    extractor:
        Turns bytes into text per media type.
    chunker:
        Splits text into page-tagged chunks.
    batcher:
        Embeds chunk text in paced batches.
    progress_tracker:
        Optional observer for fine-grained run progress.
    inline_max_chars:
        Per-chunk character budget for inline uploads.
    """

    def __init__(
        self,
        document_store: IDocumentStore,
        blob_store: IBlobStore,
        extractor: ContentExtractor,
        chunker: DocumentChunker,
        batcher: EmbeddingBatcher,
        progress_tracker: ProgressTracker | None = None,
        inline_max_chars: int = INLINE_UPLOAD_MAX_CHARS,
    ) -> None:
        self._store = document_store
        self._blobs = blob_store
        self._extractor = extractor
        self._chunker = chunker
        self._batcher = batcher
        self._progress = progress_tracker
        self._inline_max_chars = inline_max_chars

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    async def create_document(
        self,
        user_id: str,
        filename: str,
        media_type: str,
        data: bytes,
        metadata: dict[str, Any] | None = None,
        supersedes_id: str | None = None,
    ) -> Document:
        """Upload *data* and persist a ``pending`` document row.

        The bytes are uploaded first; if the upload fails no row is written
        and the :class:`~docmem.utils.errors.BlobStoreError` propagates.
        """
        if not user_id:
            raise AuthorizationError("A user id is required to create a document")

        document_id = str(uuid.uuid4())
        locator = f"{user_id}/{document_id}/{_safe_filename(filename)}"
        await self._blobs.upload(locator, data, media_type)

        document = Document(
            document_id=document_id,
            user_id=user_id,
            filename=filename,
            media_type=media_type,
            file_size=len(data),
            storage_locator=locator,
            public_url=self._blobs.public_url(locator),
            metadata=metadata or {},
            supersedes_id=supersedes_id,
        )
        await self._store.insert_document(document)
        await self._report(document_id, IngestionPhase.QUEUED, 0.0, "Document queued")

        logger.info(
            "document_created",
            document_id=document_id,
            user_id=user_id,
            media_type=media_type,
            size=len(data),
        )
        return document

    async def get_document(self, document_id: str, user_id: str) -> Document:
        """Return an owned, non-deleted document."""
        document = await self._load_owned(document_id, user_id)
        if document.deleted_at is not None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def list_documents(self, user_id: str) -> list[Document]:
        return await self._store.list_documents(user_id)

    async def delete_document(self, document_id: str, user_id: str) -> Document:
        """Soft-delete a document; the retention job purges it later.

        Deleted documents disappear from listings and search immediately.
        Deleting a document twice is a no-op that returns the stored row.
        """
        document = await self._load_owned(document_id, user_id)
        if document.deleted_at is not None:
            return document
        now = utc_now()
        deleted = document.model_copy(update={"deleted_at": now, "updated_at": now})
        await self._store.update_document(deleted)
        if self._progress is not None:
            self._progress.forget(document_id)
        logger.info("document_soft_deleted", document_id=document_id, user_id=user_id)
        return deleted

    def get_progress(self, document_id: str) -> dict | None:
        if self._progress is None:
            return None
        return self._progress.get_status(document_id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_document(
        self,
        document_id: str,
        user_id: str | None = None,
        max_chars: int | None = None,
    ) -> IngestionResult:
        """Run a ``pending`` document through the pipeline.

        Parameters
        ----------
        document_id:
            The document to process.
        user_id:
            When given, the document must belong to this user.
        max_chars:
            Per-chunk character budget; defaults to the chunker's budget.

        Returns
        -------
        IngestionResult
            ``status`` is ``completed`` or ``failed``; on failure ``error``
            carries the message also stored on the document row.

        Raises
        ------
        NotFoundError, AuthorizationError, LifecycleError
            Unknown, foreign or deleted document.
        InvalidStatusTransitionError
            The document is not ``pending``.
        """
        start = time.monotonic()
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if user_id is not None and document.user_id != user_id:
            raise AuthorizationError("Not authorized to process this document")
        if document.deleted_at is not None:
            raise LifecycleError(f"Document {document_id} has been deleted")

        # Claim the row: only one run can move it out of pending.
        document = document.with_status(DocumentStatus.PROCESSING)
        await self._store.update_status(document, expected=DocumentStatus.PENDING)
        logger.info(
            "document_processing_started",
            document_id=document_id,
            media_type=document.media_type,
        )

        try:
            chunk_count, degraded, total_tokens = await self._run_pipeline(document, max_chars)
        except DocMemError as exc:
            return await self._fail(document, str(exc), start)
        except Exception as exc:
            logger.exception("document_processing_crashed", document_id=document_id)
            return await self._fail(document, f"Unexpected error: {exc}", start)

        finished = utc_now()
        completed = document.with_status(
            DocumentStatus.COMPLETED,
            chunk_count=chunk_count,
            processing_error=None,
            processed_at=finished,
        )
        await self._store.update_status(completed, expected=DocumentStatus.PROCESSING)

        elapsed = time.monotonic() - start
        await self._report(document_id, IngestionPhase.COMPLETED, 100.0, f"{chunk_count} chunks stored")
        logger.info(
            "document_processing_completed",
            document_id=document_id,
            chunks=chunk_count,
            degraded_chunks=degraded,
            total_tokens=total_tokens,
            elapsed_s=round(elapsed, 2),
        )
        return IngestionResult(
            document_id=document_id,
            status=DocumentStatus.COMPLETED,
            chunk_count=chunk_count,
            degraded_chunks=degraded,
            total_tokens=total_tokens,
            ingestion_time=round(elapsed, 3),
        )

    async def ingest_inline(
        self,
        user_id: str,
        filename: str,
        media_type: str,
        data: bytes,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionResult:
        """Create and immediately process an inline upload with the inline chunk budget."""
        document = await self.create_document(user_id, filename, media_type, data, metadata)
        return await self.process_document(
            document.document_id,
            user_id=user_id,
            max_chars=self._inline_max_chars,
        )

    async def reprocess_document(self, document_id: str, user_id: str) -> IngestionResult:
        """Re-ingest a finished document as a new document row.

        The stored bytes are copied to a new ``pending`` document that
        records ``supersedes_id``.  When the new run completes, the old
        document's chunks are removed and the old row is soft-deleted; when
        it fails, the old document is left untouched.
        """
        original = await self.get_document(document_id, user_id)
        if not original.status.is_terminal:
            raise LifecycleError(
                f"Document {document_id} is {original.status.value}; only finished documents can be reprocessed"
            )

        data = await self._blobs.download(original.storage_locator)
        replacement = await self.create_document(
            user_id,
            original.filename,
            original.media_type,
            data,
            metadata=original.metadata,
            supersedes_id=original.document_id,
        )
        result = await self.process_document(replacement.document_id, user_id=user_id)

        if result.status == DocumentStatus.COMPLETED:
            removed = await self._store.delete_chunks(original.document_id)
            now = utc_now()
            await self._store.update_document(
                original.model_copy(update={"chunk_count": 0, "deleted_at": now, "updated_at": now})
            )
            logger.info(
                "document_superseded",
                document_id=original.document_id,
                replacement_id=replacement.document_id,
                chunks_removed=removed,
            )
        return result

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    async def _run_pipeline(
        self,
        document: Document,
        max_chars: int | None,
    ) -> tuple[int, int, int]:
        """Run every stage; return ``(chunk_count, degraded, total_tokens)``."""
        doc_id = document.document_id

        await self._report(doc_id, IngestionPhase.DOWNLOADING, 5.0, "Downloading file")
        data = await self._blobs.download(document.storage_locator)

        await self._report(doc_id, IngestionPhase.EXTRACTING, 15.0, "Extracting text")
        text = await self._extractor.extract(
            data,
            document.media_type,
            source_locator=document.public_url,
            filename=document.filename,
        )

        await self._report(doc_id, IngestionPhase.CHUNKING, 30.0, "Splitting into chunks")
        drafts = self._chunker.chunk(text, max_chars)
        if not drafts:
            raise IngestionError("Document produced no chunks")

        await self._report(doc_id, IngestionPhase.EMBEDDING, 40.0, f"Embedding {len(drafts)} chunks")
        degraded_total = 0
        persisted = 0
        async for batch in self._batcher.iter_batches([d.content for d in drafts]):
            degraded = set(batch.degraded)
            chunks = [
                Chunk(
                    chunk_id=str(uuid.uuid4()),
                    document_id=doc_id,
                    chunk_index=draft.chunk_index,
                    page=draft.page,
                    content=draft.content,
                    token_count=draft.token_count,
                    embedding=vector,
                    embedding_degraded=(batch.start + offset) in degraded,
                )
                for offset, (draft, vector) in enumerate(
                    zip(drafts[batch.start:batch.start + len(batch.vectors)], batch.vectors)
                )
            ]
            await self._store.insert_chunks(chunks)
            persisted += len(chunks)
            degraded_total += len(degraded)
            await self._report(
                doc_id,
                IngestionPhase.EMBEDDING,
                40.0 + 55.0 * persisted / len(drafts),
                f"Stored {persisted}/{len(drafts)} chunks",
            )

        chunk_count = await self._store.count_chunks(doc_id)
        if chunk_count != len(drafts):
            raise IngestionError(
                f"Persisted chunk count {chunk_count} does not match {len(drafts)} produced chunks"
            )
        total_tokens = sum(d.token_count for d in drafts)
        return chunk_count, degraded_total, total_tokens

    async def _fail(self, document: Document, message: str, start: float) -> IngestionResult:
        failed = document.with_status(DocumentStatus.FAILED, processing_error=message)
        await self._store.update_status(failed, expected=DocumentStatus.PROCESSING)
        await self._report(document.document_id, IngestionPhase.FAILED, 100.0, message)
        logger.error(
            "document_processing_failed",
            document_id=document.document_id,
            error=message,
        )
        return IngestionResult(
            document_id=document.document_id,
            status=DocumentStatus.FAILED,
            error=message,
            ingestion_time=round(time.monotonic() - start, 3),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_owned(self, document_id: str, user_id: str) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if document.user_id != user_id:
            raise AuthorizationError("Not authorized to access this document")
        return document

    async def _report(
        self,
        document_id: str,
        phase: IngestionPhase,
        progress: float,
        message: str,
    ) -> None:
        if self._progress is not None:
            await self._progress.update(document_id, phase, progress, message)
