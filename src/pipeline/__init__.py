"""Ingestion orchestration: the job state machine and progress broadcasting."""

from src.pipeline.ingestion_orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressTracker

__all__ = [
    "IngestionOrchestrator",
    "ProgressTracker",
]
