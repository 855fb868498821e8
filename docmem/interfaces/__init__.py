"""Abstract interfaces for every external collaborator of the engine.

Business logic (``docmem.services``) depends only on these ABCs; concrete
adapters in ``docmem.providers`` are injected at startup by ``docmem.main``
and replaced with fakes in tests.
"""

from docmem.interfaces.blob_store import IBlobStore
from docmem.interfaces.conversation_store import IConversationStore
from docmem.interfaces.document_store import IDocumentStore
from docmem.interfaces.embedding_provider import IEmbeddingProvider
from docmem.interfaces.llm_provider import ILLMProvider
from docmem.interfaces.memory_store import IMemoryStore

__all__ = [
    "IBlobStore",
    "IConversationStore",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IMemoryStore",
]
