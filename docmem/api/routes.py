"""FastAPI route definitions for the docmem HTTP API.

# ─── ROUTE MAP ────────────────────────────────────────────────────────
#
#   Documents
#     POST   /api/v1/documents                    upload bytes, create pending row
#     POST   /api/v1/documents/inline             upload and process at once
#     GET    /api/v1/documents                    list the caller's documents
#     GET    /api/v1/documents/{id}               document row (status polling)
#     GET    /api/v1/documents/{id}/progress      live phase / percentage
#     POST   /api/v1/documents/{id}/process       202, runs in the background
#     POST   /api/v1/documents/{id}/reprocess     re-ingest as a new document
#     DELETE /api/v1/documents/{id}               soft delete
#     POST   /api/v1/documents/search             chunk search
#
#   Memories
#     POST   /api/v1/memories/search              memories + messages search
#     POST   /api/v1/memories                     create
#     GET    /api/v1/memories                     paginated list
#     GET    /api/v1/memories/{id}
#     PATCH  /api/v1/memories/{id}
#     DELETE /api/v1/memories/{id}
#
#   Sessions
#     POST   /api/v1/sessions                     create
#     GET    /api/v1/sessions                     active sessions only
#     DELETE /api/v1/sessions/{id}                soft delete
#     POST   /api/v1/sessions/{id}/restore
#     POST   /api/v1/sessions/{id}/messages
#     GET    /api/v1/sessions/{id}/messages
#     GET    /api/v1/sessions/{id}/context        current summary + history
#     PUT    /api/v1/sessions/{id}/context        insert next summary version
#     GET    /api/v1/sessions/{id}/context/versions
#     POST   /api/v1/sessions/{id}/context/refresh
#
#   Other
#     POST   /api/v1/context                      everything relevant to a query
#     GET    /api/v1/health
#
# The caller's identity comes from the ``X-User-Id`` header.  Services are
# read from ``app.state`` via ``Depends``; a missing service means the app
# was started without it and yields 503.  Application errors raised by the
# services are mapped to status codes by ErrorHandlingMiddleware.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
)

from docmem.api.schemas import (
    ContextRequest,
    ContextUpsertRequest,
    DocumentListResponse,
    DocumentProgressResponse,
    DocumentSearchRequest,
    HealthResponse,
    MemoryListResponse,
    MemorySearchRequest,
    MessageCreateRequest,
    ProcessAcceptedResponse,
    SessionCreateRequest,
)
from docmem.models.conversation import (
    Message,
    Session,
    ShortTermContext,
    ShortTermContextView,
)
from docmem.models.document import Document, DocumentStatus, transition
from docmem.models.ingestion import IngestionResult
from docmem.models.memory import Memory, MemoryDraft, MemoryPatch
from docmem.models.retrieval import (
    ContextAnswer,
    DocumentSearchResponse,
    MemorySearchResponse,
    SearchQuery,
    SearchScope,
)
from docmem.services.context_manager import ContextManager
from docmem.services.ingestion.ingestion_service import IngestionService
from docmem.services.memory_service import MemoryService
from docmem.services.retrieval_service import RetrievalService
from docmem.services.session_service import SessionService
from docmem.utils.errors import DocMemError
from docmem.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------


def _require(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} is not available")
    return service


def _get_ingestion(request: Request) -> IngestionService:
    return _require(request, "ingestion_service")


def _get_retrieval(request: Request) -> RetrievalService:
    return _require(request, "retrieval_service")


def _get_context_manager(request: Request) -> ContextManager:
    return _require(request, "context_manager")


def _get_memory_service(request: Request) -> MemoryService:
    return _require(request, "memory_service")


def _get_session_service(request: Request) -> SessionService:
    return _require(request, "session_service")


def _get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


IngestionDep = Annotated[IngestionService, Depends(_get_ingestion)]
RetrievalDep = Annotated[RetrievalService, Depends(_get_retrieval)]
ContextDep = Annotated[ContextManager, Depends(_get_context_manager)]
MemoryDep = Annotated[MemoryService, Depends(_get_memory_service)]
SessionDep = Annotated[SessionService, Depends(_get_session_service)]
UserDep = Annotated[str, Depends(_get_user_id)]


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


async def _process_in_background(service: IngestionService, document_id: str, user_id: str) -> None:
    """Run one document; pipeline failures are already recorded on the row."""
    try:
        await service.process_document(document_id, user_id=user_id)
    except DocMemError as exc:
        _logger.error("background_processing_error", document_id=document_id, error=str(exc))


@router.post("/documents", response_model=Document, status_code=201, summary="Upload a document")
async def create_document(
    user_id: UserDep,
    service: IngestionDep,
    file: Annotated[UploadFile, File()],
    media_type: Annotated[str | None, Form()] = None,
) -> Document:
    """Store the uploaded bytes and create a ``pending`` document row."""
    data = await file.read()
    resolved_type = media_type or file.content_type or "application/octet-stream"
    return await service.create_document(user_id, file.filename or "upload", resolved_type, data)


@router.post(
    "/documents/inline",
    response_model=IngestionResult,
    summary="Upload and process a small file with inline chunk sizing",
)
async def ingest_inline(
    user_id: UserDep,
    service: IngestionDep,
    file: Annotated[UploadFile, File()],
    media_type: Annotated[str | None, Form()] = None,
) -> IngestionResult:
    data = await file.read()
    resolved_type = media_type or file.content_type or "application/octet-stream"
    return await service.ingest_inline(user_id, file.filename or "upload", resolved_type, data)


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(user_id: UserDep, service: IngestionDep) -> DocumentListResponse:
    documents = await service.list_documents(user_id)
    return DocumentListResponse(documents=documents, total=len(documents))


@router.post("/documents/search", response_model=DocumentSearchResponse)
async def search_documents(
    body: DocumentSearchRequest,
    user_id: UserDep,
    service: RetrievalDep,
) -> DocumentSearchResponse:
    scope = SearchScope(user_id=user_id, document_id=body.document_id)
    query = SearchQuery(text=body.query, vector=body.query_vector)
    return await service.search_documents(scope, query, threshold=body.threshold, limit=body.limit)


@router.get("/documents/{document_id}", response_model=Document)
async def get_document(document_id: str, user_id: UserDep, service: IngestionDep) -> Document:
    return await service.get_document(document_id, user_id)


@router.get("/documents/{document_id}/progress", response_model=DocumentProgressResponse)
async def get_document_progress(
    document_id: str,
    user_id: UserDep,
    service: IngestionDep,
) -> DocumentProgressResponse:
    """Combine the durable row status with the live progress snapshot, if any."""
    document = await service.get_document(document_id, user_id)
    snapshot = service.get_progress(document_id) or {}
    return DocumentProgressResponse(
        document_id=document_id,
        status=document.status,
        phase=snapshot.get("phase"),
        progress=snapshot.get("progress", 100.0 if document.status.is_terminal else 0.0),
        message=snapshot.get("message", ""),
        chunk_count=document.chunk_count,
        processing_error=document.processing_error,
    )


@router.post(
    "/documents/{document_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=202,
    summary="Start processing a pending document",
)
async def process_document(
    document_id: str,
    user_id: UserDep,
    service: IngestionDep,
    background_tasks: BackgroundTasks,
) -> ProcessAcceptedResponse:
    """Validate the request now; run the pipeline after the response is sent.

    Poll ``GET /documents/{id}`` for the outcome.  A document that is not
    ``pending`` is rejected with 409.
    """
    document = await service.get_document(document_id, user_id)
    transition(document.status, DocumentStatus.PROCESSING)
    background_tasks.add_task(_process_in_background, service, document_id, user_id)
    _logger.info("document_processing_scheduled", document_id=document_id)
    return ProcessAcceptedResponse(document_id=document_id, status=document.status)


@router.post("/documents/{document_id}/reprocess", response_model=IngestionResult)
async def reprocess_document(
    document_id: str,
    user_id: UserDep,
    service: IngestionDep,
) -> IngestionResult:
    return await service.reprocess_document(document_id, user_id)


@router.delete("/documents/{document_id}", response_model=Document)
async def delete_document(document_id: str, user_id: UserDep, service: IngestionDep) -> Document:
    return await service.delete_document(document_id, user_id)


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


@router.post("/memories/search", response_model=MemorySearchResponse)
async def search_memories(
    body: MemorySearchRequest,
    user_id: UserDep,
    service: RetrievalDep,
) -> MemorySearchResponse:
    """Search long-term memories and conversation messages.

    The two result lists are ranked independently; ``search_mode`` reports
    whether vector search or the text fallback produced them.
    """
    scope = SearchScope(user_id=user_id, session_id=body.session_id)
    query = SearchQuery(text=body.query, vector=body.query_vector)
    return await service.search_memories(
        scope,
        query,
        search_type=body.search_type,
        threshold=body.threshold,
        limit=body.limit,
    )


@router.post("/memories", response_model=Memory, status_code=201)
async def create_memory(draft: MemoryDraft, user_id: UserDep, service: MemoryDep) -> Memory:
    return await service.create_memory(user_id, draft)


@router.get("/memories", response_model=MemoryListResponse)
async def list_memories(
    user_id: UserDep,
    service: MemoryDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> MemoryListResponse:
    memories, total = await service.list_memories(user_id, page=page, limit=limit)
    return MemoryListResponse(memories=memories, total=total, page=page, limit=limit)


@router.get("/memories/{memory_id}", response_model=Memory)
async def get_memory(memory_id: str, user_id: UserDep, service: MemoryDep) -> Memory:
    return await service.get_memory(user_id, memory_id)


@router.patch("/memories/{memory_id}", response_model=Memory)
async def update_memory(
    memory_id: str,
    patch: MemoryPatch,
    user_id: UserDep,
    service: MemoryDep,
) -> Memory:
    return await service.update_memory(user_id, memory_id, patch)


@router.delete("/memories/{memory_id}", status_code=204)
async def delete_memory(memory_id: str, user_id: UserDep, service: MemoryDep) -> Response:
    await service.delete_memory(user_id, memory_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Sessions, messages and short-term context
# ---------------------------------------------------------------------------


@router.post("/sessions", response_model=Session, status_code=201)
async def create_session(
    body: SessionCreateRequest,
    user_id: UserDep,
    service: SessionDep,
) -> Session:
    return await service.create_session(user_id, title=body.title)


@router.get("/sessions", response_model=list[Session])
async def list_sessions(user_id: UserDep, service: SessionDep) -> list[Session]:
    return await service.list_active_sessions(user_id)


@router.delete("/sessions/{session_id}", response_model=Session)
async def delete_session(session_id: str, user_id: UserDep, service: SessionDep) -> Session:
    return await service.soft_delete_session(user_id, session_id)


@router.post("/sessions/{session_id}/restore", response_model=Session)
async def restore_session(session_id: str, user_id: UserDep, service: SessionDep) -> Session:
    return await service.restore_session(user_id, session_id)


@router.post("/sessions/{session_id}/messages", response_model=Message, status_code=201)
async def add_message(
    session_id: str,
    body: MessageCreateRequest,
    user_id: UserDep,
    service: SessionDep,
) -> Message:
    return await service.add_message(user_id, session_id, body.role, body.content)


@router.get("/sessions/{session_id}/messages", response_model=list[Message])
async def list_messages(
    session_id: str,
    user_id: UserDep,
    service: SessionDep,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> list[Message]:
    return await service.list_messages(user_id, session_id, limit=limit)


@router.get("/sessions/{session_id}/context", response_model=ShortTermContextView)
async def get_short_term_context(
    session_id: str,
    user_id: UserDep,
    manager: ContextDep,
) -> ShortTermContextView:
    """Current summary plus the full ordered message history.

    Also served for soft-deleted sessions until they are purged.
    """
    return await manager.get_short_term_context(user_id, session_id)


@router.put("/sessions/{session_id}/context", response_model=ShortTermContext, status_code=201)
async def upsert_short_term_context(
    session_id: str,
    body: ContextUpsertRequest,
    user_id: UserDep,
    manager: ContextDep,
) -> ShortTermContext:
    return await manager.upsert_short_term_context(
        user_id,
        session_id,
        body.summary_text,
        key_topics=body.key_topics,
        message_count=body.message_count,
        context_weight=body.context_weight,
        message_start_id=body.message_start_id,
        message_end_id=body.message_end_id,
    )


@router.get("/sessions/{session_id}/context/versions", response_model=list[ShortTermContext])
async def list_context_versions(
    session_id: str,
    user_id: UserDep,
    manager: ContextDep,
    limit: Annotated[int | None, Query(ge=1, le=200)] = None,
) -> list[ShortTermContext]:
    return await manager.list_context_versions(user_id, session_id, limit=limit)


@router.post("/sessions/{session_id}/context/refresh", response_model=ShortTermContext | None)
async def refresh_context(
    session_id: str,
    user_id: UserDep,
    manager: ContextDep,
) -> ShortTermContext | None:
    """Regenerate the summary if enough new messages arrived; ``null`` otherwise."""
    return await manager.refresh_summary(user_id, session_id)


# ---------------------------------------------------------------------------
# Combined context and health
# ---------------------------------------------------------------------------


@router.post("/context", response_model=ContextAnswer)
async def build_context(
    body: ContextRequest,
    user_id: UserDep,
    service: RetrievalDep,
) -> ContextAnswer:
    scope = SearchScope(user_id=user_id, session_id=body.session_id, document_id=body.document_id)
    query = SearchQuery(text=body.query, vector=body.query_vector)
    return await service.build_context(scope, query)


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(request: Request) -> HealthResponse:
    """Report version and which providers are configured.

    Without an embedding provider key the engine still serves requests
    through the text fallback, so it reports ``degraded`` rather than
    ``unhealthy``.
    """
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    status = "healthy" if providers.get("embedding", False) else "degraded"
    return HealthResponse(
        status=status,
        version=getattr(request.app.state, "version", "0.1.0"),
        providers=providers,
    )
