"""Long-term memory CRUD with ownership checks.

A memory's embedding is derived from ``title + "\\n" + content``.  It is
generated on create and regenerated whenever an update touches either
field; an embedding failure stores the memory without a vector (it can
still be found by the text fallback).
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from docmem.models.document import utc_now
from docmem.models.memory import Memory, MemoryDraft, MemoryPatch
from docmem.utils.errors import AuthorizationError, EmbeddingError, NotFoundError

if TYPE_CHECKING:
    from docmem.interfaces.embedding_provider import IEmbeddingProvider
    from docmem.interfaces.memory_store import IMemoryStore

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class MemoryService:
    """Creates, edits, lists and deletes a user's long-term memories."""

    def __init__(self, memory_store: IMemoryStore, embedding_provider: IEmbeddingProvider) -> None:
        self._store = memory_store
        self._embedder = embedding_provider

    async def create_memory(self, user_id: str, draft: MemoryDraft) -> Memory:
        if not user_id:
            raise AuthorizationError("A user id is required to create a memory")
        memory = Memory(
            memory_id=str(uuid.uuid4()),
            user_id=user_id,
            **draft.model_dump(),
        )
        memory = memory.model_copy(update={"embedding": await self._embed(memory)})
        await self._store.insert_memory(memory)
        logger.info(
            "memory_created",
            memory_id=memory.memory_id,
            user_id=user_id,
            memory_type=memory.memory_type,
            has_embedding=memory.embedding is not None,
        )
        return memory

    async def get_memory(self, user_id: str, memory_id: str) -> Memory:
        memory = await self._store.get_memory(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found")
        if memory.user_id != user_id:
            raise AuthorizationError("Not authorized to access this memory")
        return memory

    async def update_memory(self, user_id: str, memory_id: str, patch: MemoryPatch) -> Memory:
        """Apply *patch*; re-embed when ``title`` or ``content`` changed."""
        memory = await self.get_memory(user_id, memory_id)
        changes = patch.changes()
        if not changes:
            return memory

        updated = memory.model_copy(update={**changes, "updated_at": utc_now()})
        text_changed = updated.title != memory.title or updated.content != memory.content
        if text_changed:
            updated = updated.model_copy(update={"embedding": await self._embed(updated)})

        await self._store.update_memory(updated)
        logger.info(
            "memory_updated",
            memory_id=memory_id,
            fields=sorted(changes),
            reembedded=text_changed,
        )
        return updated

    async def list_memories(
        self,
        user_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[Memory], int]:
        """Return one page of memories (newest first) and the total count."""
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        memories = await self._store.list_memories(user_id, offset=(page - 1) * limit, limit=limit)
        total = await self._store.count_memories(user_id)
        return memories, total

    async def delete_memory(self, user_id: str, memory_id: str) -> None:
        await self.get_memory(user_id, memory_id)
        await self._store.delete_memory(memory_id)
        logger.info("memory_deleted", memory_id=memory_id, user_id=user_id)

    async def _embed(self, memory: Memory) -> list[float] | None:
        try:
            return await self._embedder.embed_single(memory.embedding_text())
        except EmbeddingError as exc:
            logger.warning("memory_embedding_failed", memory_id=memory.memory_id, error=str(exc))
            return None
