"""SQLite record stores.

All three stores can share one database file; each creates only its own
tables in ``initialize()``.
"""

from docmem.providers.store.sqlite_conversation_store import SQLiteConversationStore
from docmem.providers.store.sqlite_document_store import SQLiteDocumentStore
from docmem.providers.store.sqlite_memory_store import SQLiteMemoryStore

__all__ = ["SQLiteConversationStore", "SQLiteDocumentStore", "SQLiteMemoryStore"]
