"""Ingestion job state-machine models.

An :class:`IngestionJob` is created when a validated document starts
ingestion and is mutated only by the orchestrator driving it.  Every step
transition produces a new frozen copy (``model_copy(update={...})``) which
is persisted before the step runs, so a crash leaves an inspectable record
of where the job stopped.

Step order::

    PENDING -> VALIDATING_DOCUMENT -> CHUNKING | ADVANCED_PROCESSING
            -> EMBEDDING -> STORING -> UPDATING_STATISTICS -> COMPLETED

Any non-terminal step may jump to FAILED.  COMPLETED and FAILED are
terminal: a job is never resumed, a retry is a new job.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):  # noqa: UP042
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, Enum):  # noqa: UP042
    INITIAL_INGESTION = "initial_ingestion"
    ADVANCED_INGESTION = "advanced_ingestion"
    REINGESTION = "reingestion"


class IngestionStep(str, Enum):  # noqa: UP042
    """Named steps of an ingestion job, with the progress each one reports."""

    PENDING = "pending"
    VALIDATING_DOCUMENT = "validating_document"
    CHUNKING = "chunking"
    ADVANCED_PROCESSING = "advanced_processing"
    EMBEDDING = "embedding"
    STORING = "storing"
    UPDATING_STATISTICS = "updating_statistics"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def progress(self) -> float:
        return STEP_PROGRESS[self]


STEP_PROGRESS: dict[IngestionStep, float] = {
    IngestionStep.PENDING: 0.0,
    IngestionStep.VALIDATING_DOCUMENT: 10.0,
    IngestionStep.CHUNKING: 30.0,
    IngestionStep.ADVANCED_PROCESSING: 30.0,
    IngestionStep.EMBEDDING: 60.0,
    IngestionStep.STORING: 80.0,
    IngestionStep.UPDATING_STATISTICS: 90.0,
    IngestionStep.COMPLETED: 100.0,
    IngestionStep.FAILED: 0.0,
}

# Legal forward transitions.  FAILED is reachable from every non-terminal step.
STEP_TRANSITIONS: dict[IngestionStep, frozenset[IngestionStep]] = {
    IngestionStep.PENDING: frozenset({IngestionStep.VALIDATING_DOCUMENT}),
    IngestionStep.VALIDATING_DOCUMENT: frozenset(
        {IngestionStep.CHUNKING, IngestionStep.ADVANCED_PROCESSING}
    ),
    IngestionStep.CHUNKING: frozenset({IngestionStep.EMBEDDING}),
    IngestionStep.ADVANCED_PROCESSING: frozenset({IngestionStep.EMBEDDING}),
    IngestionStep.EMBEDDING: frozenset({IngestionStep.STORING}),
    IngestionStep.STORING: frozenset({IngestionStep.UPDATING_STATISTICS}),
    IngestionStep.UPDATING_STATISTICS: frozenset({IngestionStep.COMPLETED}),
    IngestionStep.COMPLETED: frozenset(),
    IngestionStep.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class IngestionJob(BaseModel):
    """Durable record of one document moving through the pipeline."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    source_id: str
    version: str
    job_type: JobType = JobType.INITIAL_INGESTION
    current_step: IngestionStep = IngestionStep.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    statistics: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class IngestionSummary(BaseModel):
    """Caller-facing result of ingesting one document.

    Mirrors ``{success, sourceId, version, document, chunks, embeddings}``.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    source_id: str
    version: str
    job_id: str | None = None
    document: dict[str, Any] = Field(default_factory=dict)
    chunks: dict[str, Any] = Field(default_factory=dict)
    embeddings: dict[str, Any] = Field(default_factory=dict)
    processing_time: float = 0.0
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class BatchIngestionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    total_documents: int
    success_count: int
    failure_count: int
    results: list[IngestionSummary] = Field(default_factory=list)
    processing_time: float = 0.0
    average_time_per_document: float = 0.0
    summary: dict[str, int] = Field(default_factory=dict)
    stopped_early: bool = False


class SourceStatistics(BaseModel):
    """Per-source aggregate counters, updated read-modify-write under a lock."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    document_count: int = 0
    chunk_count: int = 0
    embedding_count: int = 0
    last_version: str = ""
    updated_at: datetime = Field(default_factory=_utcnow)


class CorpusStats(BaseModel):
    """Snapshot of the knowledge base's size and composition."""

    model_config = ConfigDict(frozen=True)

    total_documents: int = 0
    total_sources: int = 0
    total_chunks: int = 0
    total_embeddings: int = 0
    chunks_by_scale: dict[str, int] = Field(default_factory=dict)
    embeddings_by_type: dict[str, int] = Field(default_factory=dict)
    jobs_by_status: dict[str, int] = Field(default_factory=dict)
