"""Structured logging setup using structlog.

# ─── HOW LOGGING IS WIRED ─────────────────────────────────────────────
#
# One shared processor chain (context vars, log level, timestamps, stack
# info) feeds exactly one of two renderers:
#
#   APP_ENV=production  -> JSONRenderer      (one JSON object per line)
#   anything else       -> ConsoleRenderer   (coloured, human-readable)
#
# ``json_output=True`` forces JSON regardless of APP_ENV; the CLI uses
# the default so operators get readable output in a terminal.
#
# Standard-library ``logging`` is routed through the same formatter, so
# aiosqlite, httpx and uvicorn lines look like the application's own
# events:
#
#   2026-01-05T10:00:00Z [info] document_processing_completed chunks=12
#
# Event names are snake_case verbs ("document_created", "search_fallback")
# and every value is passed as a keyword, never interpolated into the
# message, so JSON consumers can filter on fields.
# ──────────────────────────────────────────────────────────────────────
"""

import logging
import os
import sys

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output.  When False, console rendering is
                     used unless ``APP_ENV`` is ``production``.

    Returns:
        A configured structlog BoundLogger.
    """
    # Renderer choice: production logs are shipped to a collector and
    # must be machine-readable; every other environment is read by a human.
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"

    # Runs before the renderer in both modes.  contextvars comes first so
    # request-scoped bindings (request path, document id) land on every
    # event emitted while they are bound.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,     # request-scoped bindings
        structlog.processors.add_log_level,          # "level" key
        structlog.processors.StackInfoRenderer(),    # stack_info=True support
        structlog.dev.set_exc_info,                  # exc_info on .exception()
        structlog.processors.TimeStamper(fmt="iso"),  # ISO-8601, UTC
    ]

    # Only the last processor differs between environments.
    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Events below log_level are dropped before any processor runs.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Same chain for stdlib loggers owned by third-party libraries.
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()   # uvicorn installs its own; avoid duplicate lines
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger.

    Falls back to :func:`configure_logging` defaults when nothing has
    configured structlog yet (library use, tests).

    Args:
        name: Logger name, typically ``__name__``.

    Returns:
        A structlog BoundLogger bound with ``logger_name``.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)
