"""Custom exception hierarchy for docmem.

All application exceptions inherit from :class:`DocMemError`, which carries
an optional ``provider_name`` so error handlers can identify which external
service (e.g. "openai", "sqlite_documents", "local_blob") caused the failure.

The hierarchy is organized by engine stage:

    DocMemError  (base -- catch-all for any docmem error)
    +-- ExtractionError              (bytes -> text)
    |   +-- UnsupportedMediaTypeError
    +-- EmbeddingError               (embedding provider call failed)
    +-- PersistenceError             (record store write/read failed)
    +-- BlobStoreError               (upload / download of raw bytes)
    +-- IngestionError               (orchestration)
    |   +-- InvalidStatusTransitionError
    +-- RetrievalError               (search could not be served at all)
    |   +-- InvalidScopeError
    +-- LifecycleError               (session / document lifecycle rules)
    +-- AuthorizationError           (caller does not own the row)
    +-- NotFoundError
    +-- LLMError                     (completion or vision call failed)
    +-- ConfigurationError           (startup / missing config)

Ingestion stage errors never reach the caller directly: the orchestrator
records them on the document row.  Retrieval degradations are reported in
the response shape; only :class:`RetrievalError` escapes.
"""


class DocMemError(Exception):
    """Base exception for all docmem errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets for
    structured log output, e.g. ``[openai_embedding] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion stage errors
# ---------------------------------------------------------------------------

class ExtractionError(DocMemError):
    """Raised when raw bytes cannot be turned into meaningful text."""

    def __init__(
        self,
        message: str = "Content extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedMediaTypeError(ExtractionError):
    """Raised when no extraction strategy is registered for a media type."""

    def __init__(self, media_type: str, provider_name: str | None = None) -> None:
        self._media_type = media_type
        super().__init__(
            message=f"Unsupported file type: {media_type}",
            provider_name=provider_name,
        )

    @property
    def media_type(self) -> str:
        return self._media_type


class EmbeddingError(DocMemError):
    """Raised when the embedding provider fails for a request."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PersistenceError(DocMemError):
    """Raised when a record store read or write fails."""

    def __init__(
        self,
        message: str = "Record store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class BlobStoreError(DocMemError):
    """Raised when uploading or downloading raw document bytes fails."""

    def __init__(
        self,
        message: str = "Blob store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration errors
# ---------------------------------------------------------------------------

class IngestionError(DocMemError):
    """Raised when the ingestion orchestrator cannot run a document."""

    def __init__(
        self,
        message: str = "Document ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidStatusTransitionError(IngestionError):
    """Raised when a document status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        self._current = current
        self._target = target
        super().__init__(message=f"Illegal document status transition: {current} -> {target}")

    @property
    def current(self) -> str:
        return self._current

    @property
    def target(self) -> str:
        return self._target


# ---------------------------------------------------------------------------
# Retrieval errors
# ---------------------------------------------------------------------------

class RetrievalError(DocMemError):
    """Raised when no requested sub-search could be served."""

    def __init__(
        self,
        message: str = "Search failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidScopeError(RetrievalError):
    """Raised when a search scope is malformed (e.g. missing owner)."""

    def __init__(self, message: str = "Search scope requires a user id") -> None:
        super().__init__(message=message)


# ---------------------------------------------------------------------------
# Lifecycle / ownership errors
# ---------------------------------------------------------------------------

class LifecycleError(DocMemError):
    """Raised when a session or document lifecycle rule is violated."""

    def __init__(self, message: str = "Lifecycle operation not allowed") -> None:
        super().__init__(message=message)


class AuthorizationError(DocMemError):
    """Raised when a caller operates on a row owned by another user."""

    def __init__(self, message: str = "Not authorized to access this resource") -> None:
        super().__init__(message=message)


class NotFoundError(DocMemError):
    """Raised when a requested row does not exist."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message=message)


# ---------------------------------------------------------------------------
# Provider / configuration errors
# ---------------------------------------------------------------------------

class LLMError(DocMemError):
    """Raised when an LLM completion or vision call fails."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(DocMemError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
