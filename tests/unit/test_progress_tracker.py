"""Unit tests for ProgressTracker."""

from __future__ import annotations

import pytest

from docmem.models.ingestion import IngestionPhase
from docmem.pipeline.progress_tracker import ProgressTracker


class TestProgressTracker:
    @pytest.fixture()
    def tracker(self) -> ProgressTracker:
        return ProgressTracker()

    @pytest.mark.asyncio
    async def test_update_stores_status(self, tracker: ProgressTracker) -> None:
        await tracker.update("d1", IngestionPhase.EXTRACTING, 25.0, "Extracting text")
        status = tracker.get_status("d1")
        assert status["phase"] == "EXTRACTING"
        assert status["progress"] == 25.0
        assert status["message"] == "Extracting text"

    def test_get_status_unknown_document(self, tracker: ProgressTracker) -> None:
        assert tracker.get_status("unknown") is None

    @pytest.mark.asyncio
    async def test_progress_clamped_to_0_100(self, tracker: ProgressTracker) -> None:
        await tracker.update("d1", IngestionPhase.EMBEDDING, -10.0, "Negative")
        assert tracker.get_status("d1")["progress"] == 0.0

        await tracker.update("d1", IngestionPhase.EMBEDDING, 150.0, "Over")
        assert tracker.get_status("d1")["progress"] == 100.0

    @pytest.mark.asyncio
    async def test_async_and_sync_listeners(self, tracker: ProgressTracker) -> None:
        received: list[tuple] = []

        async def async_callback(did: str, phase: IngestionPhase, prog: float, msg: str) -> None:
            received.append(("async", did, phase, prog))

        def sync_callback(did: str, phase: IngestionPhase, prog: float, msg: str) -> None:
            received.append(("sync", did, phase, prog))

        tracker.register_listener("d1", async_callback)
        tracker.register_listener("d1", sync_callback)
        await tracker.update("d1", IngestionPhase.CHUNKING, 50.0, "Chunking")

        assert received == [
            ("async", "d1", IngestionPhase.CHUNKING, 50.0),
            ("sync", "d1", IngestionPhase.CHUNKING, 50.0),
        ]

    @pytest.mark.asyncio
    async def test_listeners_scoped_to_their_document(self, tracker: ProgressTracker) -> None:
        received: list[str] = []

        def callback(did: str, phase: IngestionPhase, prog: float, msg: str) -> None:
            received.append(did)

        tracker.register_listener("d1", callback)
        await tracker.update("d2", IngestionPhase.EXTRACTING, 10.0, "other run")

        assert received == []

    @pytest.mark.asyncio
    async def test_unregister_and_duplicates(self, tracker: ProgressTracker) -> None:
        received: list[str] = []

        async def callback(did: str, phase: IngestionPhase, prog: float, msg: str) -> None:
            received.append(msg)

        tracker.register_listener("d1", callback)
        tracker.register_listener("d1", callback)  # duplicate
        await tracker.update("d1", IngestionPhase.EXTRACTING, 10.0, "once")
        tracker.unregister_listener("d1", callback)
        await tracker.update("d1", IngestionPhase.CHUNKING, 20.0, "not delivered")

        assert received == ["once"]

    @pytest.mark.asyncio
    async def test_listener_error_isolation(self, tracker: ProgressTracker) -> None:
        received: list[str] = []

        async def bad_callback(did: str, phase: IngestionPhase, prog: float, msg: str) -> None:
            raise RuntimeError("Listener broke")

        async def good_callback(did: str, phase: IngestionPhase, prog: float, msg: str) -> None:
            received.append(msg)

        tracker.register_listener("d1", bad_callback)
        tracker.register_listener("d1", good_callback)
        await tracker.update("d1", IngestionPhase.COMPLETED, 100.0, "Done")

        # Good callback still fires despite bad one raising
        assert received == ["Done"]

    @pytest.mark.asyncio
    async def test_forget_drops_snapshot(self, tracker: ProgressTracker) -> None:
        await tracker.update("d1", IngestionPhase.FAILED, 0.0, "boom")
        tracker.forget("d1")
        assert tracker.get_status("d1") is None
