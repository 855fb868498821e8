"""Ingestion progress tracking."""

from docmem.pipeline.progress_tracker import ProgressTracker

__all__ = ["ProgressTracker"]
