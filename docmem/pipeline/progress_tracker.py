"""Ingestion progress tracking with callback-based listener notification.

Tracks the current phase and progress percentage for each document being
ingested and broadcasts updates to registered listener callbacks.
Listeners are keyed by document ID so concurrent ingestion runs never see
each other's events.

# ─── HOW PROGRESS TRACKING WORKS ─────────────────────────────────────
#
# Observer pattern:
#
#   IngestionService ──update()──→ ProgressTracker ──callback()──→ listener
#
#   1. The ingestion service calls tracker.update(document_id, phase, progress, msg)
#   2. ProgressTracker stores the snapshot and calls every registered listener
#   3. GET /documents/{id}/progress reads the snapshot via get_status()
#
#   - Listener errors are logged and skipped; they never reach the pipeline.
#   - Both sync and async callbacks are supported.
#   - Snapshots are in-process only.  The document row's status is the
#     durable record; this is a finer-grained view of a live run.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from docmem.models.ingestion import IngestionPhase
from docmem.utils.logging import get_logger


@dataclass
class _DocumentProgress:
    """Internal snapshot of one document's ingestion progress."""

    phase: IngestionPhase = IngestionPhase.QUEUED
    progress: float = 0.0
    message: str = ""


class ProgressTracker:
    """Tracks and broadcasts ingestion progress via callbacks."""

    def __init__(self) -> None:
        self._statuses: dict[str, _DocumentProgress] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def update(
        self,
        document_id: str,
        phase: IngestionPhase,
        progress: float,
        message: str,
    ) -> None:
        """Record a progress update and notify all registered listeners.

        Parameters
        ----------
        document_id:
            The document being ingested.
        phase:
            The current ingestion phase.
        progress:
            Completion percentage (0.0 - 100.0); clamped.
        message:
            Human-readable status message.
        """
        progress = max(0.0, min(100.0, progress))
        self._statuses[document_id] = _DocumentProgress(
            phase=phase,
            progress=progress,
            message=message,
        )

        self._logger.debug(
            "progress_update",
            document_id=document_id,
            phase=phase.value,
            progress=round(progress, 1),
            message=message,
        )

        await self._notify_listeners(document_id, phase, progress, message)

    def register_listener(self, document_id: str, callback: Callable) -> None:
        """Register a callback receiving ``(document_id, phase, progress, message)``."""
        listeners = self._listeners.setdefault(document_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                document_id=document_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, document_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(document_id, [])
        if callback in listeners:
            listeners.remove(callback)
            self._logger.debug(
                "listener_unregistered",
                document_id=document_id,
                remaining_listeners=len(listeners),
            )

    def get_status(self, document_id: str) -> dict | None:
        """Return ``{"phase", "progress", "message"}`` or None if never tracked."""
        status = self._statuses.get(document_id)
        if status is None:
            return None
        return {
            "phase": status.phase.value,
            "progress": status.progress,
            "message": status.message,
        }

    def forget(self, document_id: str) -> None:
        """Drop the snapshot and listeners of a finished or deleted document."""
        self._statuses.pop(document_id, None)
        self._listeners.pop(document_id, None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _notify_listeners(
        self,
        document_id: str,
        phase: IngestionPhase,
        progress: float,
        message: str,
    ) -> None:
        for callback in list(self._listeners.get(document_id, [])):
            try:
                result = callback(document_id, phase, progress, message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    document_id=document_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
