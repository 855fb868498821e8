"""API middleware: CORS, request logging, and error handling.

Provides helper functions and middleware classes to configure cross-origin
resource sharing, structured request logging (via structlog), and automatic
conversion of ``DocMemError`` subclasses into JSON ``ErrorResponse``
bodies.

# ─── MIDDLEWARE EXECUTION ORDER ───────────────────────────────────────
#
# Starlette middleware is a stack (last added, first executed):
#
#   In main.py:
#     app.add_middleware(ErrorHandlingMiddleware)   # added 1st, inner
#     app.add_middleware(RequestLoggingMiddleware)  # added 2nd, outer
#
#   Request flow:
#     Client -> RequestLogging -> ErrorHandling -> route handler
#
# RequestLoggingMiddleware therefore logs the final status code, after
# ErrorHandling has turned an exception into a JSON error.
#
# Error mapping (ErrorHandlingMiddleware):
#
#   AuthorizationError             403   another user's row
#   NotFoundError                  404   unknown or soft-deleted id
#   InvalidScopeError, Lifecycle   400   caller asked for something illegal
#   InvalidStatusTransitionError   409   document is not in the needed state
#   ValueError                     400   service-level validation
#   any other DocMemError          500   provider or storage failure
#
# Request-body validation (422) and the missing X-User-Id header (401)
# are raised by FastAPI itself and never reach this middleware.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from docmem.api.schemas import ErrorResponse
from docmem.utils.errors import (
    AuthorizationError,
    DocMemError,
    InvalidScopeError,
    InvalidStatusTransitionError,
    LifecycleError,
    NotFoundError,
)
from docmem.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# First match wins, so subclasses must precede their bases.
_STATUS_BY_ERROR: tuple[tuple[type[DocMemError], int], ...] = (
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (InvalidScopeError, 400),
    (LifecycleError, 400),
    (InvalidStatusTransitionError, 409),
)


def status_for(exc: DocMemError) -> int:
    """Return the HTTP status code for an application error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Parameters
    ----------
    app:
        The FastAPI application instance.
    allowed_origins:
        Explicit list of allowed origins.  Defaults to ``["*"]`` for
        development; override with specific origins in production.
    """
    # The API is usually called by a separate front end; browsers refuse
    # cross-origin responses without these headers.
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],    # X-User-Id must pass the preflight
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        # finally: a request that crashes below this layer is still logged,
        # as a 500 since no response object was produced.
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn ``DocMemError`` and ``ValueError`` into structured JSON errors.

    Ownership failures become 403, missing rows 404, lifecycle and scope
    violations 400, illegal status transitions 409, and every other
    application error 500.  A ``ValueError`` raised by a service (bad
    weight, empty content, bad batch size) becomes 400.  Stack traces
    stay in the server log.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except DocMemError as exc:
            status_code = status_for(exc)
            # Caller mistakes are warnings; only server-side failures are errors.
            log = _logger.error if status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status_code,
                path=str(request.url.path),
            )
            # exc.message, not str(exc): the provider prefix is for logs only.
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status_code, content=body.model_dump())
        # Pydantic ValidationError subclasses ValueError, so a model built
        # inside a service with bad input also lands here as a 400.
        except ValueError as exc:
            _logger.warning(
                "invalid_request",
                error_type=type(exc).__name__,
                message=str(exc),
                path=str(request.url.path),
            )
            body = ErrorResponse(error=type(exc).__name__, detail=str(exc))
            return JSONResponse(status_code=400, content=body.model_dump())
