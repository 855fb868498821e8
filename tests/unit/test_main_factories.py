"""Unit tests for factory functions in docmem/main.py.

Covers provider selection, blob store selection, full component assembly
and the create_app factory, all without network calls or API keys.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi import FastAPI

from docmem.config.settings import Settings
from docmem.main import (
    _build_blob_store,
    _build_llm_provider,
    build_components,
    close_components,
    create_app,
    initialize_stores,
)
from docmem.providers.blob.http_blob_store import HttpBlobStore
from docmem.providers.blob.local_blob_store import LocalBlobStore
from docmem.providers.llm.openai_provider import OpenAILLMProvider
from docmem.services.ingestion.ingestion_service import IngestionService
from docmem.services.retrieval_service import RetrievalService
from docmem.utils.errors import ConfigurationError


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(tmp_path: Path, **overrides) -> Settings:
    """Build a Settings instance with safe defaults and optional overrides.

    API keys default to empty strings so the no-LLM path is exercised
    unless explicitly overridden.
    """
    defaults = {
        "openai_api_key": "",
        "openai_base_url": "",
        "openai_text_model": "",
        "openai_vision_model": "",
        "openai_embedding_model": "",
        "database_path": str(tmp_path / "docmem.db"),
        "storage_backend": "local",
        "storage_root": str(tmp_path / "blobs"),
        "config_path": str(tmp_path / "missing.yaml"),
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


# ======================================================================
# Provider selection
# ======================================================================


class TestBuildLLMProvider:
    def test_none_without_key(self, tmp_path: Path) -> None:
        assert _build_llm_provider(_settings(tmp_path)) is None

    def test_openai_with_key(self, tmp_path: Path) -> None:
        provider = _build_llm_provider(_settings(tmp_path, openai_api_key="sk-test"))
        assert isinstance(provider, OpenAILLMProvider)


class TestBuildBlobStore:
    def test_local_backend(self, tmp_path: Path) -> None:
        assert isinstance(_build_blob_store(_settings(tmp_path)), LocalBlobStore)

    def test_http_backend(self, tmp_path: Path) -> None:
        store = _build_blob_store(
            _settings(tmp_path, storage_backend="http", storage_base_url="https://storage.test")
        )
        assert isinstance(store, HttpBlobStore)

    def test_http_backend_requires_url(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="STORAGE_BASE_URL"):
            _build_blob_store(_settings(tmp_path, storage_backend="http"))

    def test_unknown_backend(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Unknown STORAGE_BACKEND"):
            _build_blob_store(_settings(tmp_path, storage_backend="ftp"))


# ======================================================================
# build_components
# ======================================================================


class TestBuildComponents:
    def test_returns_all_components(self, tmp_path: Path) -> None:
        components = build_components(_settings(tmp_path), config={})

        for key in (
            "document_store",
            "memory_store",
            "conversation_store",
            "blob_store",
            "embedding_provider",
            "progress_tracker",
            "ingestion_service",
            "retrieval_service",
            "context_manager",
            "session_service",
            "memory_service",
            "retention_service",
        ):
            assert components[key] is not None, key
        assert isinstance(components["ingestion_service"], IngestionService)
        assert isinstance(components["retrieval_service"], RetrievalService)
        assert components["llm_provider"] is None

    def test_provider_registry_without_keys(self, tmp_path: Path) -> None:
        registry = build_components(_settings(tmp_path), config={})["provider_registry"]
        assert registry == {
            "embedding": False,
            "embedding_provider": "openai_embedding",
            "llm": False,
            "vision": False,
            "blob_store": "local_blob",
        }

    def test_provider_registry_with_key(self, tmp_path: Path) -> None:
        registry = build_components(_settings(tmp_path, openai_api_key="sk-test"), config={})[
            "provider_registry"
        ]
        assert registry["embedding"] is True
        assert registry["llm"] is True
        assert registry["vision"] is True

    def test_config_tunes_services(self, tmp_path: Path) -> None:
        config = {"chunking": {"max_tokens": 250}, "embedding": {"batch_size": 7}}
        components = build_components(_settings(tmp_path), config=config)

        assert components["ingestion_service"]._chunker.default_max_chars == 1000
        assert components["ingestion_service"]._batcher.batch_size == 7

    def test_config_tunes_inline_budget_and_summary_window(self, tmp_path: Path) -> None:
        config = {"chunking": {"inline_max_chars": 1200}, "context": {"summary_window": 8}}
        components = build_components(_settings(tmp_path), config=config)

        assert components["ingestion_service"]._inline_max_chars == 1200
        assert components["context_manager"]._summary_window == 8

    def test_inline_budget_defaults(self, tmp_path: Path) -> None:
        components = build_components(_settings(tmp_path), config={})

        assert components["ingestion_service"]._inline_max_chars == 4000
        assert components["context_manager"]._summary_window == 20

    @pytest.mark.asyncio
    async def test_initialize_and_close(self, tmp_path: Path) -> None:
        components = build_components(_settings(tmp_path), config={})
        await initialize_stores(components)
        await close_components(components)

        assert (tmp_path / "docmem.db").exists()


# ======================================================================
# create_app
# ======================================================================


class TestCreateApp:
    def test_returns_fastapi_with_routes(self, tmp_path: Path) -> None:
        app = create_app(settings=_settings(tmp_path))

        assert isinstance(app, FastAPI)
        paths = {route.path for route in app.routes}
        assert "/api/v1/health" in paths
        assert "/api/v1/memories/search" in paths
        assert "/api/v1/documents/{document_id}/process" in paths
        assert app.state.version == "0.1.0"

    def test_injected_components_kept_on_state(self, tmp_path: Path) -> None:
        components = {"provider_registry": {}}
        app = create_app(components=components, settings=_settings(tmp_path))
        assert app.state.injected_components is components
