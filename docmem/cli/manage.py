# =============================================================================
# docmem/cli/manage.py — Operator CLI
# =============================================================================
#
# Standalone CLI for running the engine without the HTTP server: ingest a
# local file, run a search, and drive the retention jobs from cron.
#
# Supported subcommands:
#
#   ingest          — Create a document from a local file and process it
#   search          — Search a user's memories and messages
#   purge-sessions  — Physically delete sessions soft-deleted past the grace window
#   purge-documents — Physically delete documents soft-deleted past the grace window
#   prune-contexts  — Keep only the newest summary versions per session
#
# Every command builds the same components as the API server (see
# docmem/main.py) so both surfaces share one database and blob store.
#
# Usage examples:
#   python -m docmem.cli ingest notes.pdf --user-id u1
#   python -m docmem.cli search --user-id u1 --query "leadership" --type memories
#   python -m docmem.cli purge-sessions --days 30 --dry-run
#   python -m docmem.cli prune-contexts --keep 3
# =============================================================================

"""Operator CLI for ingestion, search and retention jobs.

Usage::

    python -m docmem.cli ingest /path/to/file.pdf --user-id u1

    python -m docmem.cli search --user-id u1 --query "team conflict"

    python -m docmem.cli purge-sessions --days 30 --batch-size 100 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path
from typing import Any

from docmem.config.loader import load_config, section
from docmem.config.settings import Settings
from docmem.models.document import DocumentStatus
from docmem.models.retrieval import SearchQuery, SearchScope, SearchTarget
from docmem.utils.errors import DocMemError
from docmem.utils.logging import configure_logging


def _load_components(app_settings: Settings, config: dict[str, Any]) -> dict[str, Any]:
    """Build the same components the API server uses.

    Deferred import: the server module pulls in FastAPI and uvicorn.
    """
    from docmem.main import build_components

    return build_components(app_settings, config)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    media_type = args.media_type or mimetypes.guess_type(path.name)[0] or "text/plain"
    print(f"Ingesting {path.name} ({media_type}) for user {args.user_id}")

    service = components["ingestion_service"]
    document = await service.create_document(args.user_id, path.name, media_type, path.read_bytes())
    result = await service.process_document(document.document_id, user_id=args.user_id)

    print("\nIngestion finished:")
    print(f"  Document ID:     {result.document_id}")
    print(f"  Status:          {result.status.value}")
    print(f"  Chunks created:  {result.chunk_count}")
    print(f"  Degraded chunks: {result.degraded_chunks}")
    print(f"  Total tokens:    {result.total_tokens}")
    print(f"  Time:            {result.ingestion_time:.2f}s")
    if result.error:
        print(f"  Error:           {result.error}")
    return 0 if result.status == DocumentStatus.COMPLETED else 2


async def _handle_search(args: argparse.Namespace, components: dict[str, Any]) -> int:
    service = components["retrieval_service"]
    response = await service.search_memories(
        SearchScope(user_id=args.user_id, session_id=args.session_id),
        SearchQuery(text=args.query),
        search_type=SearchTarget(args.type),
        threshold=args.threshold,
        limit=args.limit,
    )

    print(f"Mode: {response.search_mode.value}  Results: {response.total_results}")
    if response.memories:
        print("\n  Memories:")
        for hit in response.memories:
            score = f"{hit.similarity:.3f}" if hit.similarity is not None else "  -  "
            print(f"    [{score}] {hit.title}")
    if response.messages:
        print("\n  Messages:")
        for hit in response.messages:
            score = f"{hit.similarity:.3f}" if hit.similarity is not None else "  -  "
            print(f"    [{score}] {hit.role}: {hit.content[:80]}")
    return 0


async def _handle_purge_sessions(args: argparse.Namespace, components: dict[str, Any]) -> int:
    report = await components["retention_service"].purge_deleted_sessions(
        grace_days=args.days,
        batch_size=args.batch_size,
        dry_run=args.dry_run,
    )
    verb = "Would purge" if report.dry_run else "Purged"
    print(f"{verb} {report.sessions_deleted} sessions deleted before {report.cutoff.isoformat()}")
    print(f"  Messages: {report.messages_deleted}")
    print(f"  Contexts: {report.contexts_deleted}")
    return 0


async def _handle_purge_documents(args: argparse.Namespace, components: dict[str, Any]) -> int:
    report = await components["retention_service"].purge_deleted_documents(
        grace_days=args.days,
        batch_size=args.batch_size,
        dry_run=args.dry_run,
    )
    verb = "Would purge" if report.dry_run else "Purged"
    print(f"{verb} {report.documents_deleted} documents deleted before {report.cutoff.isoformat()}")
    print(f"  Chunks: {report.chunks_deleted}")
    if report.blobs_failed:
        print(f"  Blobs that could not be deleted: {report.blobs_failed}")
    return 0


async def _handle_prune_contexts(args: argparse.Namespace, components: dict[str, Any]) -> int:
    removed = await components["retention_service"].prune_context_history(keep_latest=args.keep)
    print(f"Removed {removed} old summary versions (kept newest {args.keep} per session)")
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "search": _handle_search,
    "purge-sessions": _handle_purge_sessions,
    "purge-documents": _handle_purge_documents,
    "prune-contexts": _handle_prune_contexts,
}


async def _run(args: argparse.Namespace, components: dict[str, Any]) -> int:
    from docmem.main import close_components, initialize_stores

    await initialize_stores(components)
    try:
        return await _HANDLERS[args.command](args, components)
    except DocMemError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_components(components)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser(retention: dict[str, Any] | None = None) -> argparse.ArgumentParser:
    """Build the argparse parser; retention defaults come from config."""
    retention = retention or {}
    grace_days = retention.get("grace_days", 30)
    batch_size = retention.get("batch_size", 100)
    keep = retention.get("keep_context_versions", 3)

    parser = argparse.ArgumentParser(
        prog="python -m docmem.cli",
        description="Ingest documents, search memories and run retention jobs.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Create and process a document")
    ingest_parser.add_argument("file", help="Path to the file to ingest")
    ingest_parser.add_argument("--user-id", required=True, dest="user_id", help="Owning user")
    ingest_parser.add_argument(
        "--media-type",
        dest="media_type",
        default=None,
        help="MIME type (default: guessed from the file name)",
    )

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search memories and messages")
    search_parser.add_argument("--user-id", required=True, dest="user_id", help="Searching user")
    search_parser.add_argument("--query", required=True, help="Query text")
    search_parser.add_argument(
        "--type",
        choices=[target.value for target in SearchTarget],
        default=SearchTarget.BOTH.value,
        help="Which lists to search (default: both)",
    )
    search_parser.add_argument("--session-id", dest="session_id", default=None)
    search_parser.add_argument("--threshold", type=float, default=None)
    search_parser.add_argument("--limit", type=int, default=None)

    # -- purge-sessions --
    sessions_parser = subparsers.add_parser(
        "purge-sessions", help="Delete sessions soft-deleted past the grace window"
    )
    sessions_parser.add_argument("--days", type=int, default=grace_days, help="Grace window in days")
    sessions_parser.add_argument("--batch-size", type=int, default=batch_size, dest="batch_size")
    sessions_parser.add_argument(
        "--dry-run", action="store_true", dest="dry_run", help="Report without deleting"
    )

    # -- purge-documents --
    documents_parser = subparsers.add_parser(
        "purge-documents", help="Delete documents soft-deleted past the grace window"
    )
    documents_parser.add_argument("--days", type=int, default=grace_days, help="Grace window in days")
    documents_parser.add_argument("--batch-size", type=int, default=batch_size, dest="batch_size")
    documents_parser.add_argument(
        "--dry-run", action="store_true", dest="dry_run", help="Report without deleting"
    )

    # -- prune-contexts --
    prune_parser = subparsers.add_parser(
        "prune-contexts", help="Keep only the newest summary versions per session"
    )
    prune_parser.add_argument("--keep", type=int, default=keep, help="Versions to keep")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses the subcommand, builds the shared components from the
    environment and ``config/config.yaml``, and dispatches to the handler.
    The exit code is 0 on success, 1 on errors and 2 when an ingested
    document ended ``failed``.
    """
    app_settings = Settings()
    configure_logging(app_settings.log_level)
    config = load_config(settings=app_settings)

    parser = build_parser(section(config, "retention"))
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        components = _load_components(app_settings, config)
    except DocMemError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_run(args, components)))


if __name__ == "__main__":
    main()
