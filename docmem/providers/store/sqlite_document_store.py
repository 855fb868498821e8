"""SQLite-backed document and chunk persistence.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapter implementing IDocumentStore).
# Database: ``data/docmem.db`` (shared file; each store owns its tables).
#
# Vector search: chunk embeddings are stored as float32 BLOBs and ranked
# in-process with numpy cosine similarity (docmem/utils/vectors.py).
# Candidate rows are read in insertion order (``chunks.id``), which makes
# equal-similarity ties resolve deterministically.
#
# Only chunks whose document is ``completed`` and not soft-deleted are
# searchable: rows from an in-flight or failed run are diagnostics only.
#
# Uses ``aiosqlite`` for async I/O and ``PRAGMA journal_mode=WAL`` so
# retrieval reads proceed while an ingestion run is appending chunks.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from docmem.interfaces.document_store import IDocumentStore
from docmem.models.document import Chunk, Document, DocumentStatus
from docmem.models.retrieval import ChunkHit
from docmem.providers.store.sqlite_helpers import from_iso, from_json, like_pattern, to_iso, to_json
from docmem.utils.errors import InvalidStatusTransitionError, PersistenceError
from docmem.utils.vectors import decode_vector, encode_vector, rank_by_similarity

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docmem.db")

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_DOCUMENTS_TABLE = """\
CREATE TABLE IF NOT EXISTS documents (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id      TEXT    NOT NULL UNIQUE,
    user_id          TEXT    NOT NULL,
    filename         TEXT    NOT NULL,
    media_type       TEXT    NOT NULL,
    file_size        INTEGER NOT NULL DEFAULT 0,
    storage_locator  TEXT    NOT NULL,
    public_url       TEXT,
    status           TEXT    NOT NULL DEFAULT 'pending',
    chunk_count      INTEGER NOT NULL DEFAULT 0,
    processing_error TEXT,
    metadata         TEXT,
    supersedes_id    TEXT,
    created_at       TEXT    NOT NULL,
    updated_at       TEXT    NOT NULL,
    processed_at     TEXT,
    deleted_at       TEXT
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS document_chunks (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id           TEXT    NOT NULL UNIQUE,
    document_id        TEXT    NOT NULL REFERENCES documents(document_id) ON DELETE CASCADE,
    chunk_index        INTEGER NOT NULL,
    page               INTEGER,
    content            TEXT    NOT NULL,
    token_count        INTEGER NOT NULL DEFAULT 0,
    embedding          BLOB,
    embedding_degraded INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL,
    UNIQUE(document_id, chunk_index)
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_documents_user ON documents(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status);",
    "CREATE INDEX IF NOT EXISTS idx_documents_deleted ON documents(deleted_at);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON document_chunks(document_id);",
]

# ── DML ───────────────────────────────────────────────────────────────

_INSERT_DOCUMENT = """\
INSERT INTO documents (document_id, user_id, filename, media_type, file_size,
                       storage_locator, public_url, status, chunk_count,
                       processing_error, metadata, supersedes_id,
                       created_at, updated_at, processed_at, deleted_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_DOCUMENT = """\
UPDATE documents
SET chunk_count = ?, updated_at = ?, deleted_at = ?
WHERE document_id = ?;
"""

# Guarded by the prior status so two runs can never both move the same row.
_UPDATE_STATUS = """\
UPDATE documents
SET status = ?, chunk_count = ?, processing_error = ?,
    processed_at = ?, updated_at = ?
WHERE document_id = ? AND status = ?;
"""

_SELECT_DOCUMENT_COLUMNS = """\
SELECT document_id, user_id, filename, media_type, file_size, storage_locator,
       public_url, status, chunk_count, processing_error, metadata, supersedes_id,
       created_at, updated_at, processed_at, deleted_at
FROM documents
"""

_INSERT_CHUNK = """\
INSERT INTO document_chunks (chunk_id, document_id, chunk_index, page, content,
                             token_count, embedding, embedding_degraded, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_CHUNKS = """\
SELECT chunk_id, document_id, chunk_index, page, content, token_count,
       embedding, embedding_degraded, created_at
FROM document_chunks
WHERE document_id = ?
ORDER BY chunk_index ASC;
"""

# Candidate chunks for search: owner-scoped, completed, not soft-deleted.
_SEARCHABLE_CHUNKS = """\
SELECT c.chunk_id, c.document_id, d.filename, c.chunk_index, c.page, c.content,
       c.embedding
FROM document_chunks c
JOIN documents d ON d.document_id = c.document_id
WHERE d.user_id = ?
  AND d.status = 'completed'
  AND d.deleted_at IS NULL
"""


class SQLiteDocumentStore(IDocumentStore):
    """SQLite-backed persistence for documents and their chunks."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the document tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_DOCUMENTS_TABLE)
            await db.execute(_CREATE_CHUNKS_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("document_store_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_documents"

    # ── Documents ──────────────────────────────────────────────────────

    async def insert_document(self, document: Document) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_INSERT_DOCUMENT, (
                    document.document_id,
                    document.user_id,
                    document.filename,
                    document.media_type,
                    document.file_size,
                    document.storage_locator,
                    document.public_url,
                    document.status.value,
                    document.chunk_count,
                    document.processing_error,
                    to_json(document.metadata),
                    document.supersedes_id,
                    to_iso(document.created_at),
                    to_iso(document.updated_at),
                    to_iso(document.processed_at),
                    to_iso(document.deleted_at),
                ))
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to insert document {document.document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def get_document(self, document_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _SELECT_DOCUMENT_COLUMNS + "WHERE document_id = ?;", (document_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_document(dict(row)) if row else None

    async def update_document(self, document: Document) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_UPDATE_DOCUMENT, (
                    document.chunk_count,
                    to_iso(document.updated_at),
                    to_iso(document.deleted_at),
                    document.document_id,
                ))
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to update document {document.document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def update_status(self, document: Document, expected: DocumentStatus) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(_UPDATE_STATUS, (
                    document.status.value,
                    document.chunk_count,
                    document.processing_error,
                    to_iso(document.processed_at),
                    to_iso(document.updated_at),
                    document.document_id,
                    expected.value,
                ))
                updated = cursor.rowcount
                if updated == 0:
                    cursor = await db.execute(
                        "SELECT status FROM documents WHERE document_id = ?;",
                        (document.document_id,),
                    )
                    row = await cursor.fetchone()
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to update status of document {document.document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if updated == 0:
            current = row[0] if row else "missing"
            logger.warning(
                "document_status_conflict",
                document_id=document.document_id,
                expected=expected.value,
                current=current,
                target=document.status.value,
            )
            raise InvalidStatusTransitionError(current, document.status.value)

    async def list_documents(self, user_id: str, include_deleted: bool = False) -> list[Document]:
        query = _SELECT_DOCUMENT_COLUMNS + "WHERE user_id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        query += " ORDER BY created_at DESC, id DESC;"
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, (user_id,))
            rows = await cursor.fetchall()
        return [self._row_to_document(dict(r)) for r in rows]

    async def list_deleted_documents(self, deleted_before: datetime, limit: int) -> list[Document]:
        query = (
            _SELECT_DOCUMENT_COLUMNS
            + "WHERE deleted_at IS NOT NULL AND deleted_at < ? ORDER BY deleted_at ASC LIMIT ?;"
        )
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, (to_iso(deleted_before), limit))
            rows = await cursor.fetchall()
        return [self._row_to_document(dict(r)) for r in rows]

    async def purge_document(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM document_chunks WHERE document_id = ?;", (document_id,)
            )
            removed = cursor.rowcount
            await db.execute("DELETE FROM documents WHERE document_id = ?;", (document_id,))
            await db.commit()
        return removed

    # ── Chunks ─────────────────────────────────────────────────────────

    async def insert_chunks(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        rows = [
            (
                c.chunk_id,
                c.document_id,
                c.chunk_index,
                c.page,
                c.content,
                c.token_count,
                encode_vector(c.embedding),
                int(c.embedding_degraded),
                to_iso(c.created_at),
            )
            for c in chunks
        ]
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.executemany(_INSERT_CHUNK, rows)
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to persist chunk batch for {chunks[0].document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def count_chunks(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM document_chunks WHERE document_id = ?;", (document_id,)
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def list_chunks(self, document_id: str) -> list[Chunk]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_CHUNKS, (document_id,))
            rows = await cursor.fetchall()
        return [
            Chunk(
                chunk_id=r["chunk_id"],
                document_id=r["document_id"],
                chunk_index=r["chunk_index"],
                page=r["page"],
                content=r["content"],
                token_count=r["token_count"],
                embedding=decode_vector(r["embedding"]) or [],
                embedding_degraded=bool(r["embedding_degraded"]),
                created_at=from_iso(r["created_at"]),
            )
            for r in rows
        ]

    async def delete_chunks(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM document_chunks WHERE document_id = ?;", (document_id,)
            )
            await db.commit()
            return cursor.rowcount

    # ── Search primitives ──────────────────────────────────────────────

    async def match_chunks(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
        document_id: str | None = None,
    ) -> list[ChunkHit]:
        query, params = self._searchable_query(user_id, document_id)
        query += " AND c.embedding IS NOT NULL ORDER BY c.id ASC;"
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Chunk similarity search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ranked = rank_by_similarity(vector, [r["embedding"] for r in rows], threshold, limit)
        return [self._row_to_hit(rows[pos], similarity=score) for pos, score in ranked]

    async def search_chunks_text(
        self,
        user_id: str,
        text: str,
        limit: int,
        document_id: str | None = None,
    ) -> list[ChunkHit]:
        needle = text.strip()
        if not needle or limit <= 0:
            return []
        query, params = self._searchable_query(user_id, document_id)
        query += " AND c.content LIKE ? ESCAPE '\\' ORDER BY c.id ASC LIMIT ?;"
        params.extend([like_pattern(needle), limit])
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Chunk text search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return [self._row_to_hit(r, similarity=None) for r in rows]

    # ── Row mapping ────────────────────────────────────────────────────

    @staticmethod
    def _searchable_query(user_id: str, document_id: str | None) -> tuple[str, list[Any]]:
        query = _SEARCHABLE_CHUNKS
        params: list[Any] = [user_id]
        if document_id is not None:
            query += " AND c.document_id = ?"
            params.append(document_id)
        return query, params

    @staticmethod
    def _row_to_hit(row: aiosqlite.Row, similarity: float | None) -> ChunkHit:
        return ChunkHit(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            filename=row["filename"],
            chunk_index=row["chunk_index"],
            page=row["page"],
            content=row["content"],
            similarity=similarity,
        )

    @staticmethod
    def _row_to_document(row: dict[str, Any]) -> Document:
        return Document(
            document_id=row["document_id"],
            user_id=row["user_id"],
            filename=row["filename"],
            media_type=row["media_type"],
            file_size=row["file_size"],
            storage_locator=row["storage_locator"],
            public_url=row["public_url"],
            status=DocumentStatus(row["status"]),
            chunk_count=row["chunk_count"],
            processing_error=row["processing_error"],
            metadata=from_json(row["metadata"], {}),
            supersedes_id=row["supersedes_id"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            processed_at=from_iso(row["processed_at"]),
            deleted_at=from_iso(row["deleted_at"]),
        )
