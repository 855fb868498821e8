"""Abstract base class for long-term memory persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from docmem.models.memory import Memory
from docmem.models.retrieval import MemoryHit


class IMemoryStore(ABC):
    """Contract for long-term memory rows and their search primitives."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""

    @abstractmethod
    async def insert_memory(self, memory: Memory) -> None:
        """Persist a new memory row."""

    @abstractmethod
    async def get_memory(self, memory_id: str) -> Memory | None:
        """Return the memory regardless of owner, or ``None``."""

    @abstractmethod
    async def update_memory(self, memory: Memory) -> None:
        """Overwrite every mutable column of an existing memory."""

    @abstractmethod
    async def delete_memory(self, memory_id: str) -> bool:
        """Delete a memory; return ``False`` if it did not exist."""

    @abstractmethod
    async def list_memories(self, user_id: str, offset: int, limit: int) -> list[Memory]:
        """Return one page of the user's memories, newest first."""

    @abstractmethod
    async def count_memories(self, user_id: str) -> int:
        """Return how many memories the user owns."""

    @abstractmethod
    async def match_memories(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[MemoryHit]:
        """Similarity search: hits with ``similarity >= threshold``, best first."""

    @abstractmethod
    async def search_memories_text(self, user_id: str, text: str, limit: int) -> list[MemoryHit]:
        """Case-insensitive substring match over title and content."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
