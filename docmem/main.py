"""docmem FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml``, configures
structured logging, and exposes the ``docmem-server`` entry point.

``build_components`` is shared with the CLI so both surfaces run the same
engine assembly.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from docmem.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from docmem.api.routes import router as api_router
from docmem.config.loader import load_config, section
from docmem.config.settings import Settings
from docmem.interfaces.blob_store import IBlobStore
from docmem.interfaces.llm_provider import ILLMProvider
from docmem.pipeline.progress_tracker import ProgressTracker
from docmem.providers.blob.http_blob_store import HttpBlobStore
from docmem.providers.blob.local_blob_store import LocalBlobStore
from docmem.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docmem.providers.llm.openai_provider import OpenAILLMProvider
from docmem.providers.store.sqlite_conversation_store import SQLiteConversationStore
from docmem.providers.store.sqlite_document_store import SQLiteDocumentStore
from docmem.providers.store.sqlite_memory_store import SQLiteMemoryStore
from docmem.services.context_manager import ContextManager
from docmem.services.ingestion.chunker import INLINE_UPLOAD_MAX_CHARS, DocumentChunker
from docmem.services.ingestion.embedding_batcher import EmbeddingBatcher
from docmem.services.ingestion.extractors import ContentExtractor
from docmem.services.ingestion.ingestion_service import IngestionService
from docmem.services.memory_service import MemoryService
from docmem.services.retention_service import RetentionService
from docmem.services.retrieval_service import RetrievalService
from docmem.services.session_service import SessionService
from docmem.utils.errors import ConfigurationError
from docmem.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """Return the OpenAI provider when a key is configured, else ``None``.

    Without an LLM, images get a placeholder text and summaries use the
    deterministic fallback.
    """
    if app_settings.has_openai():
        return OpenAILLMProvider(settings=app_settings)
    return None


def _build_blob_store(app_settings: Settings) -> IBlobStore:
    backend = app_settings.storage_backend.lower()
    if backend == "local":
        return LocalBlobStore(
            root=app_settings.storage_root,
            public_base_url=app_settings.storage_public_base_url,
        )
    if backend == "http":
        if not app_settings.storage_base_url:
            raise ConfigurationError(
                message="STORAGE_BASE_URL is required when STORAGE_BACKEND=http",
            )
        return HttpBlobStore(
            base_url=app_settings.storage_base_url,
            bucket=app_settings.storage_bucket,
            api_key=app_settings.storage_api_key,
            public_base_url=app_settings.storage_public_base_url,
        )
    raise ConfigurationError(message=f"Unknown STORAGE_BACKEND: {app_settings.storage_backend}")


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(app_settings: Settings, config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components to be stored on ``app.state``.
    Tuning values come from the YAML *config*; missing keys fall back to
    each service's defaults.
    """
    config = config if config is not None else load_config(settings=app_settings)
    chunking = section(config, "chunking")
    embedding = section(config, "embedding")
    retrieval = section(config, "retrieval")
    context = section(config, "context")
    retention = section(config, "retention")

    # -- Stores (one SQLite file, three table families) --
    document_store = SQLiteDocumentStore(app_settings.database_path)
    memory_store = SQLiteMemoryStore(app_settings.database_path)
    conversation_store = SQLiteConversationStore(app_settings.database_path)
    blob_store = _build_blob_store(app_settings)

    # -- AI providers --
    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)
    llm = _build_llm_provider(app_settings)

    # -- Ingestion --
    progress_tracker = ProgressTracker()
    chunker = DocumentChunker(
        max_tokens=chunking.get("max_tokens", 1000),
        chars_per_token=chunking.get("chars_per_token", 4),
    )
    batcher = EmbeddingBatcher(
        embedding_provider,
        batch_size=embedding.get("batch_size", 5),
        pacing_delay=embedding.get("pacing_delay_seconds", 0.1),
        max_input_chars=embedding.get("max_input_chars", 8000),
    )
    ingestion_service = IngestionService(
        document_store=document_store,
        blob_store=blob_store,
        extractor=ContentExtractor(llm=llm),
        chunker=chunker,
        batcher=batcher,
        progress_tracker=progress_tracker,
        inline_max_chars=chunking.get("inline_max_chars", INLINE_UPLOAD_MAX_CHARS),
    )

    # -- Retrieval and conversation services --
    retrieval_service = RetrievalService(
        embedding_provider,
        memory_store,
        conversation_store,
        document_store,
        memory_threshold=retrieval.get("memory_threshold", 0.7),
        memory_limit=retrieval.get("memory_limit", 10),
        document_threshold=retrieval.get("document_threshold", 0.5),
        document_limit=retrieval.get("document_limit", 5),
        history_limit=retrieval.get("history_limit", 5),
        recent_message_limit=context.get("recent_message_limit", 10),
    )
    context_manager = ContextManager(
        conversation_store,
        embedding_provider,
        llm=llm,
        min_messages=context.get("min_messages", 3),
        regenerate_after=context.get("regenerate_after", 3),
        summary_window=context.get("summary_window", 20),
        max_key_topics=context.get("max_key_topics", 5),
        version_list_limit=context.get("version_list_limit", 50),
    )
    session_service = SessionService(
        conversation_store,
        embedding_provider,
        restore_window_days=retention.get("restore_window_days", 30),
    )
    memory_service = MemoryService(memory_store, embedding_provider)
    retention_service = RetentionService(conversation_store, document_store, blob_store)

    provider_registry = {
        "embedding": embedding_provider.is_available(),
        "embedding_provider": embedding_provider.get_provider_name(),
        "llm": llm is not None,
        "vision": llm is not None and llm.supports_vision(),
        "blob_store": blob_store.get_provider_name(),
    }

    return {
        "document_store": document_store,
        "memory_store": memory_store,
        "conversation_store": conversation_store,
        "blob_store": blob_store,
        "embedding_provider": embedding_provider,
        "llm_provider": llm,
        "progress_tracker": progress_tracker,
        "ingestion_service": ingestion_service,
        "retrieval_service": retrieval_service,
        "context_manager": context_manager,
        "session_service": session_service,
        "memory_service": memory_service,
        "retention_service": retention_service,
        "provider_registry": provider_registry,
    }


async def initialize_stores(components: dict[str, Any]) -> None:
    """Create tables for every record store in *components*."""
    for key in ("document_store", "memory_store", "conversation_store"):
        store = components.get(key)
        if store is not None:
            await store.initialize()


async def close_components(components: dict[str, Any]) -> None:
    """Release network clients held by the components."""
    blob_store = components.get("blob_store")
    if isinstance(blob_store, HttpBlobStore):
        await blob_store.close()


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build (or adopt injected) components on startup, clean up on shutdown."""
    components: dict[str, Any] | None = getattr(application.state, "injected_components", None)
    if components is None:
        app_settings: Settings = application.state.settings
        components = build_components(app_settings)

    for key, value in components.items():
        setattr(application.state, key, value)

    await initialize_stores(components)
    _logger.info(
        "app_startup",
        version=_VERSION,
        providers=components.get("provider_registry", {}),
    )

    yield

    await close_components(components)
    _logger.info("app_shutdown")


def create_app(
    components: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    components:
        Prebuilt components (as returned by :func:`build_components`).
        Tests pass fakes here; when omitted they are built on startup.
    settings:
        Settings to build from; read from the environment when omitted.
    """
    application = FastAPI(
        title="docmem API",
        version=_VERSION,
        description=(
            "Ingest documents into searchable chunks, keep long-term memories "
            "and conversation context, and retrieve them by vector similarity "
            "with a text fallback."
        ),
        lifespan=_lifespan,
    )
    application.state.settings = settings or Settings()
    application.state.injected_components = components
    application.state.version = _VERSION

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


def main() -> None:
    """Run the API server with uvicorn."""
    app_settings = Settings()
    configure_logging(app_settings.log_level)
    uvicorn.run(
        "docmem.main:create_app",
        factory=True,
        host=app_settings.app_host,
        port=app_settings.app_port,
        reload=(app_settings.app_env == "development"),
    )


if __name__ == "__main__":
    main()
