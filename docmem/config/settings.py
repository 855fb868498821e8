"""Application settings loaded from environment variables via pydantic-settings.

Values are read from the environment first, then from a ``.env`` file in
the working directory.  Field ``openai_api_key`` maps to ``OPENAI_API_KEY``
and so on.  Tuning knobs (chunk budgets, batch sizes, thresholds) live in
``config/config.yaml`` instead; this class only holds secrets, endpoints
and paths.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docmem application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === OpenAI ===
    # Empty key = "not configured"; the factories in main.py then build
    # the engine without embeddings (text fallback only) or vision.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, Azure proxy, ...)
    openai_embedding_model: str = ""  # default text-embedding-3-small
    openai_text_model: str = ""  # default gpt-4o-mini (summaries)
    openai_vision_model: str = ""  # default gpt-4o-mini (image descriptions)

    # === Record store ===
    database_path: str = "data/docmem.db"

    # === Blob store ===
    storage_backend: str = "local"  # "local" or "http"
    storage_root: str = "data/blobs"
    storage_bucket: str = "documents"
    storage_base_url: str = ""  # object storage REST endpoint for the http backend
    storage_public_base_url: str = ""  # prefix for publicly reachable object URLs
    storage_api_key: str = ""

    # === App Config ===
    config_path: str = "config/config.yaml"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def has_openai(self) -> bool:
        """Return ``True`` when an OpenAI(-compatible) key is configured."""
        return bool(self.openai_api_key)
