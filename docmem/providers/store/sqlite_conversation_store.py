"""SQLite-backed session, message and short-term context persistence.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapter implementing IConversationStore).
#
# Soft delete: ``sessions.deleted_at`` is a marker only.  Messages and
# contexts of a soft-deleted session are still returned by every read
# here; ``purge_session`` (called by the retention job) is the only code
# path that removes them.
#
# Context versions: ``UNIQUE(session_id, user_id, summary_version)`` makes
# a concurrent double-insert of the same version fail instead of silently
# producing two "current" rows.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from docmem.interfaces.conversation_store import IConversationStore
from docmem.models.conversation import Message, MessageRole, Session, ShortTermContext
from docmem.models.retrieval import MessageHit
from docmem.providers.store.sqlite_helpers import from_iso, from_json, like_pattern, to_iso, to_json
from docmem.utils.errors import PersistenceError
from docmem.utils.vectors import decode_vector, encode_vector, rank_by_similarity

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docmem.db")

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_SESSIONS_TABLE = """\
CREATE TABLE IF NOT EXISTS sessions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id  TEXT    NOT NULL UNIQUE,
    user_id     TEXT    NOT NULL,
    title       TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    deleted_at  TEXT,
    created_at  TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL
);
"""

_CREATE_MESSAGES_TABLE = """\
CREATE TABLE IF NOT EXISTS conversation_messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id  TEXT    NOT NULL UNIQUE,
    session_id  TEXT    NOT NULL REFERENCES sessions(session_id),
    user_id     TEXT    NOT NULL,
    role        TEXT    NOT NULL,
    content     TEXT    NOT NULL,
    embedding   BLOB,
    created_at  TEXT    NOT NULL
);
"""

_CREATE_CONTEXTS_TABLE = """\
CREATE TABLE IF NOT EXISTS short_term_contexts (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    context_id       TEXT    NOT NULL UNIQUE,
    session_id       TEXT    NOT NULL REFERENCES sessions(session_id),
    user_id          TEXT    NOT NULL,
    summary_version  INTEGER NOT NULL,
    summary_text     TEXT    NOT NULL,
    key_topics       TEXT    NOT NULL DEFAULT '[]',
    message_count    INTEGER NOT NULL DEFAULT 0,
    message_start_id TEXT,
    message_end_id   TEXT,
    context_weight   REAL    NOT NULL DEFAULT 0.5,
    embedding        BLOB,
    created_at       TEXT    NOT NULL,
    last_accessed    TEXT    NOT NULL,
    UNIQUE(session_id, user_id, summary_version)
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_sessions_deleted ON sessions(deleted_at);",
    "CREATE INDEX IF NOT EXISTS idx_messages_session ON conversation_messages(session_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_messages_user ON conversation_messages(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_contexts_session ON short_term_contexts(session_id, user_id, summary_version);",
]

# ── DML ───────────────────────────────────────────────────────────────

_INSERT_SESSION = """\
INSERT INTO sessions (session_id, user_id, title, is_active, deleted_at, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_SESSION = """\
UPDATE sessions SET title = ?, is_active = ?, deleted_at = ?, updated_at = ?
WHERE session_id = ?;
"""

_SELECT_SESSION_COLUMNS = """\
SELECT session_id, user_id, title, is_active, deleted_at, created_at, updated_at
FROM sessions
"""

_INSERT_MESSAGE = """\
INSERT INTO conversation_messages (message_id, session_id, user_id, role, content, embedding, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_MESSAGE_COLUMNS = """\
SELECT id, message_id, session_id, user_id, role, content, embedding, created_at
FROM conversation_messages
"""

_INSERT_CONTEXT = """\
INSERT INTO short_term_contexts (context_id, session_id, user_id, summary_version,
                                 summary_text, key_topics, message_count,
                                 message_start_id, message_end_id, context_weight,
                                 embedding, created_at, last_accessed)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_CONTEXT_COLUMNS = """\
SELECT context_id, session_id, user_id, summary_version, summary_text, key_topics,
       message_count, message_start_id, message_end_id, context_weight, embedding,
       created_at, last_accessed
FROM short_term_contexts
"""

# Keeps the newest N versions per (session, user); older rows are removed.
_PRUNE_CONTEXTS = """\
DELETE FROM short_term_contexts
WHERE id IN (
    SELECT id FROM (
        SELECT id,
               ROW_NUMBER() OVER (
                   PARTITION BY session_id, user_id
                   ORDER BY summary_version DESC
               ) AS rn
        FROM short_term_contexts
    )
    WHERE rn > ?
);
"""


class SQLiteConversationStore(IConversationStore):
    """SQLite-backed persistence for sessions, messages and contexts."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the conversation tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_SESSIONS_TABLE)
            await db.execute(_CREATE_MESSAGES_TABLE)
            await db.execute(_CREATE_CONTEXTS_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("conversation_store_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_conversations"

    # ── Sessions ───────────────────────────────────────────────────────

    async def insert_session(self, session: Session) -> None:
        await self._write(_INSERT_SESSION, (
            session.session_id,
            session.user_id,
            session.title,
            int(session.is_active),
            to_iso(session.deleted_at),
            to_iso(session.created_at),
            to_iso(session.updated_at),
        ), f"insert session {session.session_id}")

    async def get_session(self, session_id: str) -> Session | None:
        rows = await self._fetch(
            _SELECT_SESSION_COLUMNS + "WHERE session_id = ?;", (session_id,), "get session"
        )
        return self._row_to_session(rows[0]) if rows else None

    async def update_session(self, session: Session) -> None:
        await self._write(_UPDATE_SESSION, (
            session.title,
            int(session.is_active),
            to_iso(session.deleted_at),
            to_iso(session.updated_at),
            session.session_id,
        ), f"update session {session.session_id}")

    async def list_sessions(self, user_id: str, active_only: bool = True) -> list[Session]:
        query = _SELECT_SESSION_COLUMNS + "WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1 AND deleted_at IS NULL"
        query += " ORDER BY updated_at DESC, id DESC;"
        rows = await self._fetch(query, (user_id,), "list sessions")
        return [self._row_to_session(r) for r in rows]

    async def list_deleted_sessions(self, deleted_before: datetime, limit: int) -> list[Session]:
        query = (
            _SELECT_SESSION_COLUMNS
            + "WHERE deleted_at IS NOT NULL AND deleted_at < ? ORDER BY deleted_at ASC LIMIT ?;"
        )
        rows = await self._fetch(query, (to_iso(deleted_before), limit), "list deleted sessions")
        return [self._row_to_session(r) for r in rows]

    async def count_session_children(self, session_id: str) -> tuple[int, int]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM short_term_contexts WHERE session_id = ?;", (session_id,)
            )
            contexts = (await cursor.fetchone())[0]
            cursor = await db.execute(
                "SELECT COUNT(*) FROM conversation_messages WHERE session_id = ?;", (session_id,)
            )
            messages = (await cursor.fetchone())[0]
        return int(contexts), int(messages)

    async def purge_session(self, session_id: str) -> tuple[int, int]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(
                    "DELETE FROM short_term_contexts WHERE session_id = ?;", (session_id,)
                )
                contexts = cursor.rowcount
                cursor = await db.execute(
                    "DELETE FROM conversation_messages WHERE session_id = ?;", (session_id,)
                )
                messages = cursor.rowcount
                await db.execute("DELETE FROM sessions WHERE session_id = ?;", (session_id,))
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to purge session {session_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return contexts, messages

    # ── Messages ───────────────────────────────────────────────────────

    async def insert_message(self, message: Message) -> None:
        await self._write(_INSERT_MESSAGE, (
            message.message_id,
            message.session_id,
            message.user_id,
            message.role.value,
            message.content,
            encode_vector(message.embedding),
            to_iso(message.created_at),
        ), f"insert message {message.message_id}")

    async def list_messages(
        self,
        session_id: str,
        user_id: str,
        limit: int | None = None,
    ) -> list[Message]:
        if limit is None:
            query = _SELECT_MESSAGE_COLUMNS + "WHERE session_id = ? AND user_id = ? ORDER BY created_at ASC, id ASC;"
            rows = await self._fetch(query, (session_id, user_id), "list messages")
        else:
            # Newest N, then flip back to chronological order.
            query = _SELECT_MESSAGE_COLUMNS + "WHERE session_id = ? AND user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?;"
            rows = list(reversed(await self._fetch(query, (session_id, user_id, limit), "list messages")))
        return [self._row_to_message(r) for r in rows]

    async def count_messages(self, session_id: str, user_id: str) -> int:
        rows = await self._fetch(
            "SELECT COUNT(*) AS n FROM conversation_messages WHERE session_id = ? AND user_id = ?;",
            (session_id, user_id),
            "count messages",
        )
        return int(rows[0]["n"]) if rows else 0

    async def match_messages(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
        session_id: str | None = None,
        exclude_session_id: str | None = None,
    ) -> list[MessageHit]:
        query = _SELECT_MESSAGE_COLUMNS + "WHERE user_id = ? AND embedding IS NOT NULL"
        params: list[Any] = [user_id]
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)
        if exclude_session_id is not None:
            query += " AND session_id != ?"
            params.append(exclude_session_id)
        query += " ORDER BY id ASC;"
        rows = await self._fetch(query, tuple(params), "message similarity search")
        ranked = rank_by_similarity(vector, [r["embedding"] for r in rows], threshold, limit)
        return [self._row_to_hit(rows[pos], similarity=score) for pos, score in ranked]

    async def search_messages_text(
        self,
        user_id: str,
        text: str,
        limit: int,
        session_id: str | None = None,
    ) -> list[MessageHit]:
        needle = text.strip()
        if not needle or limit <= 0:
            return []
        query = _SELECT_MESSAGE_COLUMNS + "WHERE user_id = ? AND content LIKE ? ESCAPE '\\'"
        params: list[Any] = [user_id, like_pattern(needle)]
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)
        query += " ORDER BY id ASC LIMIT ?;"
        params.append(limit)
        rows = await self._fetch(query, tuple(params), "message text search")
        return [self._row_to_hit(r, similarity=None) for r in rows]

    # ── Short-term contexts ────────────────────────────────────────────

    async def insert_context(self, context: ShortTermContext) -> None:
        await self._write(_INSERT_CONTEXT, (
            context.context_id,
            context.session_id,
            context.user_id,
            context.summary_version,
            context.summary_text,
            to_json(context.key_topics),
            context.message_count,
            context.message_start_id,
            context.message_end_id,
            context.context_weight,
            encode_vector(context.embedding),
            to_iso(context.created_at),
            to_iso(context.last_accessed),
        ), f"insert context v{context.summary_version} for {context.session_id}")

    async def latest_context(self, session_id: str, user_id: str) -> ShortTermContext | None:
        contexts = await self.list_contexts(session_id, user_id, limit=1)
        return contexts[0] if contexts else None

    async def list_contexts(
        self,
        session_id: str,
        user_id: str,
        limit: int,
    ) -> list[ShortTermContext]:
        query = (
            _SELECT_CONTEXT_COLUMNS
            + "WHERE session_id = ? AND user_id = ? ORDER BY summary_version DESC LIMIT ?;"
        )
        rows = await self._fetch(query, (session_id, user_id, limit), "list contexts")
        return [self._row_to_context(r) for r in rows]

    async def max_context_version(self, session_id: str, user_id: str) -> int:
        rows = await self._fetch(
            "SELECT MAX(summary_version) AS v FROM short_term_contexts WHERE session_id = ? AND user_id = ?;",
            (session_id, user_id),
            "max context version",
        )
        value = rows[0]["v"] if rows else None
        return int(value) if value is not None else 0

    async def touch_context(self, context_id: str, accessed_at: datetime) -> None:
        await self._write(
            "UPDATE short_term_contexts SET last_accessed = ? WHERE context_id = ?;",
            (to_iso(accessed_at), context_id),
            f"touch context {context_id}",
        )

    async def prune_contexts(self, keep_latest: int) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_PRUNE_CONTEXTS, (keep_latest,))
            await db.commit()
            return cursor.rowcount

    # ── Helpers ────────────────────────────────────────────────────────

    async def _write(self, sql: str, params: tuple[Any, ...], label: str) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(sql, params)
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to {label}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def _fetch(self, query: str, params: tuple[Any, ...], label: str) -> list[dict[str, Any]]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to {label}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return [dict(r) for r in rows]

    @staticmethod
    def _row_to_session(row: dict[str, Any]) -> Session:
        return Session(
            session_id=row["session_id"],
            user_id=row["user_id"],
            title=row["title"],
            is_active=bool(row["is_active"]),
            deleted_at=from_iso(row["deleted_at"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row: dict[str, Any]) -> Message:
        return Message(
            message_id=row["message_id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            role=MessageRole(row["role"]),
            content=row["content"],
            embedding=decode_vector(row["embedding"]),
            created_at=from_iso(row["created_at"]),
        )

    @staticmethod
    def _row_to_hit(row: dict[str, Any], similarity: float | None) -> MessageHit:
        return MessageHit(
            message_id=row["message_id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            created_at=from_iso(row["created_at"]),
            similarity=similarity,
        )

    @staticmethod
    def _row_to_context(row: dict[str, Any]) -> ShortTermContext:
        return ShortTermContext(
            context_id=row["context_id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            summary_version=row["summary_version"],
            summary_text=row["summary_text"],
            key_topics=from_json(row["key_topics"], []),
            message_count=row["message_count"],
            message_start_id=row["message_start_id"],
            message_end_id=row["message_end_id"],
            context_weight=row["context_weight"],
            embedding=decode_vector(row["embedding"]),
            created_at=from_iso(row["created_at"]),
            last_accessed=from_iso(row["last_accessed"]),
        )
