"""Shared pytest fixtures for the docmem test suite."""

from __future__ import annotations

import hashlib
import struct
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from docmem.interfaces.blob_store import IBlobStore
from docmem.interfaces.embedding_provider import IEmbeddingProvider
from docmem.interfaces.llm_provider import ILLMProvider
from docmem.pipeline.progress_tracker import ProgressTracker
from docmem.providers.store.sqlite_conversation_store import SQLiteConversationStore
from docmem.providers.store.sqlite_document_store import SQLiteDocumentStore
from docmem.providers.store.sqlite_memory_store import SQLiteMemoryStore
from docmem.services.ingestion.chunker import DocumentChunker
from docmem.services.ingestion.embedding_batcher import EmbeddingBatcher
from docmem.services.ingestion.extractors import ContentExtractor
from docmem.services.ingestion.ingestion_service import IngestionService
from docmem.utils.errors import BlobStoreError, EmbeddingError

# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

EMBEDDING_DIM = 128


def hash_to_vector(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Generate a deterministic unit vector by hashing *text*.

    Same text always produces the same vector; different texts produce
    nearly orthogonal vectors, so cosine similarity is ~1.0 for identical
    text and far below any realistic threshold otherwise.
    """
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = digest
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    raw = raw[: dim * 4]
    # Map each 4-byte word to [-1, 1] rather than reinterpreting as float,
    # which could yield NaN or inf.
    values = [(v / 0xFFFFFFFF) * 2.0 - 1.0 for v in struct.unpack(f"<{dim}I", raw)]
    magnitude = max(sum(v * v for v in values) ** 0.5, 1e-10)
    return [v / magnitude for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests.

    Texts listed in ``fail_on`` raise :class:`EmbeddingError`; every call
    is recorded in ``calls``.
    """

    def __init__(self, fail_on: set[str] | None = None, dimension: int = EMBEDDING_DIM) -> None:
        self.fail_on = fail_on or set()
        self.calls: list[str] = []
        self._dimension = dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise EmbeddingError(message="mock failure", provider_name="mock-embedding")
        return hash_to_vector(text, self._dimension)

    def get_dimension(self) -> int:
        return self._dimension

    def get_max_input_chars(self) -> int:
        return 8000

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


class FailingEmbeddingProvider(MockEmbeddingProvider):
    """Embedding provider whose every call fails."""

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        raise EmbeddingError(message="provider down", provider_name="mock-embedding")

    def is_available(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------


class InMemoryBlobStore(IBlobStore):
    """Dict-backed blob store with a fake public URL scheme."""

    def __init__(self, public_base_url: str = "https://blobs.test") -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_delete = False
        self._public_base_url = public_base_url

    async def upload(self, locator: str, data: bytes, content_type: str) -> str:
        self.objects[locator] = data
        return locator

    async def download(self, locator: str) -> bytes:
        try:
            return self.objects[locator]
        except KeyError as exc:
            raise BlobStoreError(message=f"Missing {locator}", provider_name="memory_blob") from exc

    async def delete(self, locator: str) -> None:
        if self.fail_delete:
            raise BlobStoreError(message="delete refused", provider_name="memory_blob")
        self.objects.pop(locator, None)

    def public_url(self, locator: str) -> str | None:
        return f"{self._public_base_url}/{locator}" if self._public_base_url else None

    def get_provider_name(self) -> str:
        return "memory_blob"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider with vision; override return values per test."""
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.supports_vision.return_value = True
    mock.complete = AsyncMock(return_value="The user asked about team leadership.")
    mock.describe_image = AsyncMock(return_value="A whiteboard listing quarterly goals.")
    return mock


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "docmem.db"


@pytest.fixture
async def document_store(db_path: Path) -> SQLiteDocumentStore:
    store = SQLiteDocumentStore(db_path)
    await store.initialize()
    return store


@pytest.fixture
async def memory_store(db_path: Path) -> SQLiteMemoryStore:
    store = SQLiteMemoryStore(db_path)
    await store.initialize()
    return store


@pytest.fixture
async def conversation_store(db_path: Path) -> SQLiteConversationStore:
    store = SQLiteConversationStore(db_path)
    await store.initialize()
    return store


async def _no_sleep(_: float) -> None:
    return None


def make_ingestion_service(
    document_store: SQLiteDocumentStore,
    blob_store: IBlobStore,
    embedding_provider: IEmbeddingProvider,
    llm: ILLMProvider | None = None,
    max_tokens: int = 1000,
) -> IngestionService:
    return IngestionService(
        document_store=document_store,
        blob_store=blob_store,
        extractor=ContentExtractor(llm=llm),
        chunker=DocumentChunker(max_tokens=max_tokens),
        batcher=EmbeddingBatcher(embedding_provider, sleep=_no_sleep),
        progress_tracker=ProgressTracker(),
    )


@pytest.fixture
def ingestion_service(
    document_store: SQLiteDocumentStore,
    blob_store: InMemoryBlobStore,
    mock_embedding_provider: MockEmbeddingProvider,
) -> IngestionService:
    return make_ingestion_service(document_store, blob_store, mock_embedding_provider)
