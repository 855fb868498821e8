"""Abstract base class for document and chunk persistence.

The store exposes plain row operations plus the two search primitives the
retrieval layer needs: a similarity search (vector, threshold, row cap,
owner) and a case-insensitive substring match.  Both only consider chunks
of ``completed`` documents that have not been soft-deleted, and both are
always scoped to one owner.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from docmem.models.document import Chunk, Document, DocumentStatus
from docmem.models.retrieval import ChunkHit


class IDocumentStore(ABC):
    """Contract for document rows and their immutable chunk rows."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""

    # -- documents --

    @abstractmethod
    async def insert_document(self, document: Document) -> None:
        """Persist a new document row."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document regardless of owner, or ``None``."""

    @abstractmethod
    async def update_document(self, document: Document) -> None:
        """Write the non-status bookkeeping columns of *document*.

        Only chunk_count, updated_at and deleted_at are written; status
        changes go through :meth:`update_status`.
        """

    @abstractmethod
    async def update_status(self, document: Document, expected: DocumentStatus) -> None:
        """Compare-and-set write of a status change.

        Writes status, chunk_count, processing_error, processed_at and
        updated_at only while the stored row is still in *expected*.

        Raises
        ------
        InvalidStatusTransitionError
            The stored status is no longer *expected* (another run moved
            the document first).
        """

    @abstractmethod
    async def list_documents(self, user_id: str, include_deleted: bool = False) -> list[Document]:
        """Return the user's documents, newest first."""

    @abstractmethod
    async def list_deleted_documents(self, deleted_before: datetime, limit: int) -> list[Document]:
        """Return soft-deleted documents whose ``deleted_at`` < *deleted_before*."""

    @abstractmethod
    async def purge_document(self, document_id: str) -> int:
        """Physically delete a document and its chunks; return chunks removed."""

    # -- chunks --

    @abstractmethod
    async def insert_chunks(self, chunks: list[Chunk]) -> None:
        """Append a batch of chunks in a single transaction.

        Raises
        ------
        docmem.utils.errors.PersistenceError
            If the write fails; no row of the batch is kept.
        """

    @abstractmethod
    async def count_chunks(self, document_id: str) -> int:
        """Return the number of persisted chunks for a document."""

    @abstractmethod
    async def list_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks ordered by ``chunk_index``."""

    @abstractmethod
    async def delete_chunks(self, document_id: str) -> int:
        """Delete every chunk of a document; return the number removed."""

    # -- search primitives --

    @abstractmethod
    async def match_chunks(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
        document_id: str | None = None,
    ) -> list[ChunkHit]:
        """Similarity search: hits with ``similarity >= threshold``, best first."""

    @abstractmethod
    async def search_chunks_text(
        self,
        user_id: str,
        text: str,
        limit: int,
        document_id: str | None = None,
    ) -> list[ChunkHit]:
        """Case-insensitive substring match over chunk content."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
