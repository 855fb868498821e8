"""SQLite-backed long-term memory persistence.

Same provider pattern as :mod:`docmem.providers.store.sqlite_document_store`:
module-level SQL constants, one ``aiosqlite`` connection per operation,
embeddings as float32 BLOBs ranked with numpy.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from docmem.interfaces.memory_store import IMemoryStore
from docmem.models.memory import Memory
from docmem.models.retrieval import MemoryHit
from docmem.providers.store.sqlite_helpers import from_iso, from_json, like_pattern, to_iso, to_json
from docmem.utils.errors import PersistenceError
from docmem.utils.vectors import decode_vector, encode_vector, rank_by_similarity

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docmem.db")

_CREATE_MEMORIES_TABLE = """\
CREATE TABLE IF NOT EXISTS memories (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_id            TEXT    NOT NULL UNIQUE,
    user_id              TEXT    NOT NULL,
    title                TEXT    NOT NULL,
    content              TEXT    NOT NULL,
    memory_type          TEXT    NOT NULL DEFAULT 'general',
    topics               TEXT    NOT NULL DEFAULT '[]',
    scenarios            TEXT    NOT NULL DEFAULT '[]',
    confidence_score     REAL    NOT NULL DEFAULT 0.8,
    embedding            BLOB,
    metadata             TEXT,
    source_session_ids   TEXT    NOT NULL DEFAULT '[]',
    source_message_count INTEGER NOT NULL DEFAULT 0,
    created_at           TEXT    NOT NULL,
    updated_at           TEXT    NOT NULL
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type);",
]

_INSERT_MEMORY = """\
INSERT INTO memories (memory_id, user_id, title, content, memory_type, topics,
                      scenarios, confidence_score, embedding, metadata,
                      source_session_ids, source_message_count, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_MEMORY = """\
UPDATE memories
SET title = ?, content = ?, memory_type = ?, topics = ?, scenarios = ?,
    confidence_score = ?, embedding = ?, metadata = ?, source_session_ids = ?,
    source_message_count = ?, updated_at = ?
WHERE memory_id = ?;
"""

_SELECT_MEMORY_COLUMNS = """\
SELECT memory_id, user_id, title, content, memory_type, topics, scenarios,
       confidence_score, embedding, metadata, source_session_ids,
       source_message_count, created_at, updated_at
FROM memories
"""


class SQLiteMemoryStore(IMemoryStore):
    """SQLite-backed persistence for long-term memories."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the memories table and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_MEMORIES_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("memory_store_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_memories"

    # ── CRUD ───────────────────────────────────────────────────────────

    async def insert_memory(self, memory: Memory) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_INSERT_MEMORY, (
                    memory.memory_id,
                    memory.user_id,
                    memory.title,
                    memory.content,
                    memory.memory_type,
                    to_json(memory.topics),
                    to_json(memory.scenarios),
                    memory.confidence_score,
                    encode_vector(memory.embedding),
                    to_json(memory.metadata),
                    to_json(memory.source_session_ids),
                    memory.source_message_count,
                    to_iso(memory.created_at),
                    to_iso(memory.updated_at),
                ))
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to insert memory {memory.memory_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def get_memory(self, memory_id: str) -> Memory | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_MEMORY_COLUMNS + "WHERE memory_id = ?;", (memory_id,))
            row = await cursor.fetchone()
        return self._row_to_memory(dict(row)) if row else None

    async def update_memory(self, memory: Memory) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_UPDATE_MEMORY, (
                    memory.title,
                    memory.content,
                    memory.memory_type,
                    to_json(memory.topics),
                    to_json(memory.scenarios),
                    memory.confidence_score,
                    encode_vector(memory.embedding),
                    to_json(memory.metadata),
                    to_json(memory.source_session_ids),
                    memory.source_message_count,
                    to_iso(memory.updated_at),
                    memory.memory_id,
                ))
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to update memory {memory.memory_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete_memory(self, memory_id: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM memories WHERE memory_id = ?;", (memory_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def list_memories(self, user_id: str, offset: int, limit: int) -> list[Memory]:
        query = _SELECT_MEMORY_COLUMNS + "WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?;"
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, (user_id, limit, offset))
            rows = await cursor.fetchall()
        return [self._row_to_memory(dict(r)) for r in rows]

    async def count_memories(self, user_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM memories WHERE user_id = ?;", (user_id,))
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ── Search primitives ──────────────────────────────────────────────

    async def match_memories(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[MemoryHit]:
        query = _SELECT_MEMORY_COLUMNS + "WHERE user_id = ? AND embedding IS NOT NULL ORDER BY id ASC;"
        rows = await self._fetch(query, (user_id,), "Memory similarity search")
        ranked = rank_by_similarity(vector, [r["embedding"] for r in rows], threshold, limit)
        return [self._row_to_hit(rows[pos], similarity=score) for pos, score in ranked]

    async def search_memories_text(self, user_id: str, text: str, limit: int) -> list[MemoryHit]:
        needle = text.strip()
        if not needle or limit <= 0:
            return []
        pattern = like_pattern(needle)
        query = (
            _SELECT_MEMORY_COLUMNS
            + "WHERE user_id = ? AND (title LIKE ? ESCAPE '\\' OR content LIKE ? ESCAPE '\\') "
            + "ORDER BY id ASC LIMIT ?;"
        )
        rows = await self._fetch(query, (user_id, pattern, pattern, limit), "Memory text search")
        return [self._row_to_hit(r, similarity=None) for r in rows]

    # ── Helpers ────────────────────────────────────────────────────────

    async def _fetch(self, query: str, params: tuple[Any, ...], label: str) -> list[dict[str, Any]]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"{label} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return [dict(r) for r in rows]

    @staticmethod
    def _row_to_hit(row: dict[str, Any], similarity: float | None) -> MemoryHit:
        return MemoryHit(
            memory_id=row["memory_id"],
            title=row["title"],
            content=row["content"],
            memory_type=row["memory_type"],
            topics=from_json(row["topics"], []),
            scenarios=from_json(row["scenarios"], []),
            confidence_score=row["confidence_score"],
            metadata=from_json(row["metadata"], {}),
            created_at=from_iso(row["created_at"]),
            similarity=similarity,
        )

    @staticmethod
    def _row_to_memory(row: dict[str, Any]) -> Memory:
        return Memory(
            memory_id=row["memory_id"],
            user_id=row["user_id"],
            title=row["title"],
            content=row["content"],
            memory_type=row["memory_type"],
            topics=from_json(row["topics"], []),
            scenarios=from_json(row["scenarios"], []),
            confidence_score=row["confidence_score"],
            embedding=decode_vector(row["embedding"]),
            metadata=from_json(row["metadata"], {}),
            source_session_ids=from_json(row["source_session_ids"], []),
            source_message_count=row["source_message_count"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )
