"""Ingestion orchestrator: drives documents through the pipeline as jobs.

Each document becomes one :class:`IngestionJob` that walks a fixed state
machine::

    pending -> validating_document -> chunking | advanced_processing
            -> embedding -> storing -> updating_statistics -> completed

Any non-terminal step may end in ``failed``.  Every transition is persisted
(step + progress) before the step's work starts, and broadcast through the
:class:`ProgressTracker`, so a crash leaves an inspectable record of where
the job stopped.  Jobs are never resumed: a retry is a new job.

Failure policy:

* A malformed, empty, oversized or unreadable document raises
  :class:`ValidationError` before any job exists.
* Anything that goes wrong once the job exists (persistence, provider,
  cancellation, unexpected bugs) ends the job as ``failed`` with the error
  message and is reported in the summary; it never aborts a batch.
* Per-chunk embedding failures are warnings, the document is still stored.

The document write (document + chunks + embeddings) is a single store
transaction.  A (source_id, version) is reserved under a per-source
``asyncio.Lock`` before its job starts, so two jobs never write the same
version; the same lock serialises per-source statistics updates.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from src.config.pipeline_config import PipelineConfig
from src.interfaces.knowledge_store import IKnowledgeStore
from src.models.document import Document, DocumentSubmission
from src.models.embedding import EmbeddingBatchResult
from src.models.ingestion import (
    STEP_TRANSITIONS,
    BatchIngestionSummary,
    IngestionJob,
    IngestionStep,
    IngestionSummary,
    JobStatus,
    JobType,
)
from src.pipeline.progress_tracker import ProgressTracker
from src.services.chunking.hierarchical_chunker import ChunkingOutcome, HierarchicalChunker
from src.services.chunking.structure_parser import StructureParser
from src.services.embedding.multi_scale_embedder import MultiScaleEmbedder
from src.utils.concurrency import KeyedLocks, throttled_gather
from src.utils.errors import (
    DocuweaveError,
    JobCancelledError,
    PipelineError,
    ProviderError,
    ValidationError,
)
from src.utils.logging import bind_job_context, clear_job_context, get_logger

_STEP_MESSAGES: dict[IngestionStep, str] = {
    IngestionStep.VALIDATING_DOCUMENT: "Validating document...",
    IngestionStep.CHUNKING: "Chunking document...",
    IngestionStep.ADVANCED_PROCESSING: "Chunking document with boundary refinement...",
    IngestionStep.EMBEDDING: "Generating embeddings...",
    IngestionStep.STORING: "Storing document, chunks and embeddings...",
    IngestionStep.UPDATING_STATISTICS: "Updating source statistics...",
    IngestionStep.COMPLETED: "Ingestion complete",
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class IngestionOrchestrator:
    """Runs ingestion jobs against a knowledge store.

    All collaborators are injected; the orchestrator never creates
    providers itself.

    Parameters
    ----------
    store:
        Knowledge store receiving documents, chunks, embeddings and jobs.
    embedder:
        Multi-scale embedder wrapping the embedding provider.
    config:
        Frozen pipeline configuration for every job this orchestrator runs.
    progress_tracker:
        Receives a progress update at every step transition.
    parser:
        Structure parser handed to each job's chunker.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        embedder: MultiScaleEmbedder,
        config: PipelineConfig | None = None,
        progress_tracker: ProgressTracker | None = None,
        parser: StructureParser | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or PipelineConfig()
        self._tracker = progress_tracker or ProgressTracker()
        self._parser = parser or StructureParser()
        self._source_locks = KeyedLocks()
        self._active: dict[str, str] = {}  # job_id -> content hash
        self._in_flight: set[tuple[str, str]] = set()  # (source_id, version)
        self._cancelled: set[str] = set()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def progress_tracker(self) -> ProgressTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest_document(self, submission: DocumentSubmission) -> IngestionSummary:
        """Ingest one document.

        Raises
        ------
        ValidationError
            If the document is malformed, empty, oversized, unreadable, or
            re-submits an existing ``(source_id, version)`` with different
            content, or names a ``(source_id, version)`` another job is
            already ingesting.  No job is created in that case.
        """
        document = await self.load_document(submission)
        async with self._source_locks.get(document.source_id):
            existing = await self._store.get_document(document.source_id, document.version)
            if existing is None:
                self._reserve(document)
        if existing is not None:
            if existing.metadata.content_hash != document.metadata.content_hash:
                raise ValidationError(
                    message=(
                        f"{document.source_id} version {document.version} already exists "
                        "with different content; submit a new version instead"
                    )
                )
            self._logger.info(
                "document_already_ingested",
                source_id=document.source_id,
                version=document.version,
            )
            return IngestionSummary(
                success=True,
                source_id=document.source_id,
                version=document.version,
                document=self._document_summary(document),
                warnings=["Document version already ingested; nothing to do"],
            )

        job_type = JobType.ADVANCED_INGESTION if submission.advanced else JobType.INITIAL_INGESTION
        try:
            return await self._run_job(document, job_type, advanced=submission.advanced)
        finally:
            self._release(document)

    async def reingest(
        self,
        submission: DocumentSubmission,
        replace_existing: bool = False,
        archive_previous: bool = True,
    ) -> IngestionSummary:
        """Ingest a new version of an existing source.

        Parameters
        ----------
        replace_existing:
            Delete every older version's chunks and embeddings once the new
            version is stored.
        archive_previous:
            When not replacing, mark older versions' chunks archived so
            retrieval skips them.
        """
        document = await self.load_document(submission)
        async with self._source_locks.get(document.source_id):
            if await self._store.get_document(document.source_id, document.version) is not None:
                raise ValidationError(
                    message=f"{document.source_id} version {document.version} already exists"
                )
            self._reserve(document)
        try:
            return await self._run_job(
                document,
                JobType.REINGESTION,
                advanced=submission.advanced,
                replace_existing=replace_existing,
                archive_previous=archive_previous,
            )
        finally:
            self._release(document)

    async def ingest_batch(
        self,
        submissions: Sequence[DocumentSubmission],
        concurrency: int | None = None,
        stop_on_error: bool | None = None,
    ) -> BatchIngestionSummary:
        """Ingest several documents with a bounded worker pool.

        A failing document never affects the others.  With
        ``stop_on_error`` no new document is started after the first
        failure; documents already running finish normally.
        """
        cfg = self._config.ingestion
        limit = concurrency or cfg.batch_concurrency
        stop_on_error = cfg.stop_on_error if stop_on_error is None else stop_on_error
        stop = asyncio.Event()
        started = time.perf_counter()

        async def _one(submission: DocumentSubmission) -> IngestionSummary | None:
            if stop.is_set():
                return None
            try:
                summary = await self.ingest_document(submission)
            except DocuweaveError as exc:
                self._logger.warning(
                    "document_rejected",
                    source_id=submission.source_id,
                    error=str(exc),
                )
                summary = IngestionSummary(
                    success=False,
                    source_id=submission.source_id,
                    version=submission.version,
                    error=str(exc),
                )
            if not summary.success and stop_on_error:
                stop.set()
            return summary

        outcomes = await throttled_gather(
            [_one(s) for s in submissions], limit=limit, return_exceptions=False
        )
        results = [r for r in outcomes if r is not None]
        elapsed = time.perf_counter() - started
        success_count = sum(1 for r in results if r.success)

        summary = BatchIngestionSummary(
            success=success_count == len(submissions),
            total_documents=len(submissions),
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
            processing_time=elapsed,
            average_time_per_document=elapsed / len(results) if results else 0.0,
            summary={
                "total_chunks": sum(r.chunks.get("stored", 0) for r in results),
                "total_embeddings": sum(
                    r.embeddings.get("generated", 0) + r.embeddings.get("cached", 0) for r in results
                ),
                "skipped": len(submissions) - len(results),
            },
            stopped_early=len(results) < len(submissions),
        )
        self._logger.info(
            "batch_complete",
            total=summary.total_documents,
            succeeded=summary.success_count,
            failed=summary.failure_count,
            skipped=summary.summary["skipped"],
            elapsed_s=round(elapsed, 3),
        )
        return summary

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation of a running job.

        The job stops at its next step boundary or before its next
        provider call and ends as ``failed`` with error ``"cancelled"``.
        Returns ``False`` when the job is not running.
        """
        if job_id not in self._active:
            return False
        self._cancelled.add(job_id)
        self._logger.info("job_cancel_requested", job_id=job_id)
        return True

    async def get_job(self, job_id: str) -> IngestionJob | None:
        return await self._store.get_job(job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
    ) -> list[IngestionJob]:
        return await self._store.list_jobs(status=status, source_id=source_id)

    async def pipeline_stats(self) -> dict[str, Any]:
        """Corpus totals plus what the pipeline is doing right now."""
        stats = await self._store.get_stats()
        return {
            **stats.model_dump(),
            "active_jobs": len(self._active),
            "embedding_provider_calls": self._embedder.provider_calls,
            "store": self._store.get_provider_name(),
        }

    async def load_document(self, submission: DocumentSubmission) -> Document:
        """Turn a submission into a :class:`Document`, or raise ValidationError."""
        cfg = self._config.ingestion
        if not submission.source_id.strip():
            raise ValidationError(message="source_id must not be empty")
        given = [v for v in (submission.path, submission.content, submission.text) if v is not None]
        if len(given) != 1:
            raise ValidationError(message="Exactly one of path, content or text must be given")

        file_name = ""
        if submission.path is not None:
            raw = await self._read_path(submission.path)
            file_name = submission.path.name
        elif submission.content is not None:
            raw = submission.content
        else:
            raw = submission.text.encode("utf-8")

        if len(raw) > cfg.max_document_bytes:
            raise ValidationError(
                message=f"Document is {len(raw)} bytes; the limit is {cfg.max_document_bytes}"
            )
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(message=f"Document is not valid UTF-8: {exc}") from exc
        if not text.strip():
            raise ValidationError(message="Document is empty")

        return Document.from_text(
            source_id=submission.source_id,
            version=submission.version,
            text=text,
            title=submission.title,
            file_name=file_name,
        )

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run_job(
        self,
        document: Document,
        job_type: JobType,
        advanced: bool,
        replace_existing: bool = False,
        archive_previous: bool = False,
    ) -> IngestionSummary:
        started = time.perf_counter()
        content_hash = document.metadata.content_hash
        job = IngestionJob(
            job_id=str(uuid.uuid4()),
            source_id=document.source_id,
            version=document.version,
            job_type=job_type,
            warnings=await self._duplicate_warnings(document),
        )
        self._active[job.job_id] = content_hash
        bind_job_context(job.job_id, document.source_id)

        outcome: ChunkingOutcome | None = None
        batch: EmbeddingBatchResult | None = None
        try:
            await self._store.upsert_job(job)
            self._logger.info("job_started", job_type=job_type.value, version=document.version)

            job = await self._advance(job, IngestionStep.VALIDATING_DOCUMENT)
            if document.metadata.word_count == 0:
                raise ValidationError(message="Document has no words")

            step = IngestionStep.ADVANCED_PROCESSING if advanced else IngestionStep.CHUNKING
            job = await self._advance(job, step)
            chunk_config = self._config.with_refinement().chunking if advanced else self._config.chunking
            chunker = HierarchicalChunker(chunk_config, self._parser)
            outcome = chunker.chunk(document)
            chunks = outcome.table.to_list()
            if not chunks:
                raise PipelineError(message="Document produced no chunks that passed validation")

            job = await self._advance(job, IngestionStep.EMBEDDING)
            job_id = job.job_id
            batch = await self._embedder.embed_chunks(
                chunks, should_cancel=lambda: job_id in self._cancelled
            )
            if not batch.embeddings:
                raise ProviderError(message=f"All {len(batch.failures)} embedding requests failed")
            if batch.failures:
                job = job.model_copy(
                    update={
                        "warnings": [
                            *job.warnings,
                            f"{len(batch.failures)} embedding(s) failed after retries",
                        ]
                    }
                )

            job = await self._advance(job, IngestionStep.STORING)
            await self._store.write_document(document, chunks, batch.embeddings)
            superseded = await self._retire_previous(
                document, job_type, replace_existing, archive_previous
            )

            job = await self._advance(job, IngestionStep.UPDATING_STATISTICS)
            async with self._source_locks.get(document.source_id):
                await self._store.update_source_statistics(
                    document.source_id,
                    document.version,
                    documents=1,
                    chunks=len(chunks),
                    embeddings=len(batch.embeddings),
                )

            statistics = {
                **outcome.stats.model_dump(),
                "embeddings_generated": batch.generated,
                "embeddings_cached": batch.cached,
                "embedding_failures": len(batch.failures),
                "superseded_chunks": superseded,
            }
            job = await self._complete(job, statistics)
            return self._summary(document, job, outcome, batch, started)

        except JobCancelledError:
            job = await self._fail(job, "cancelled")
        except DocuweaveError as exc:
            job = await self._fail(job, str(exc))
        except Exception as exc:
            self._logger.exception("job_unexpected_error", error=str(exc))
            job = await self._fail(job, f"Unexpected error: {exc}")
        finally:
            self._active.pop(job.job_id, None)
            self._cancelled.discard(job.job_id)
            clear_job_context()

        return self._summary(document, job, outcome, batch, started)

    async def _advance(
        self,
        job: IngestionJob,
        step: IngestionStep,
        check_cancel: bool = True,
    ) -> IngestionJob:
        """Persist and broadcast the transition to *step*."""
        if check_cancel and job.job_id in self._cancelled:
            raise JobCancelledError()
        if step not in STEP_TRANSITIONS[job.current_step]:
            raise PipelineError(
                message=f"Invalid transition {job.current_step.value} -> {step.value}"
            )
        job = job.model_copy(
            update={
                "current_step": step,
                "progress": step.progress,
                "status": JobStatus.RUNNING,
                "updated_at": _utcnow(),
            }
        )
        await self._store.upsert_job(job)
        await self._tracker.update(job.job_id, step, step.progress, _STEP_MESSAGES.get(step, ""))
        self._logger.info("job_step", step=step.value, progress=step.progress)
        return job

    async def _complete(self, job: IngestionJob, statistics: dict[str, Any]) -> IngestionJob:
        # Everything is stored by now; a late cancel no longer applies.
        job = await self._advance(job, IngestionStep.COMPLETED, check_cancel=False)
        now = _utcnow()
        job = job.model_copy(
            update={
                "status": JobStatus.COMPLETED,
                "completed_at": now,
                "updated_at": now,
                "statistics": statistics,
            }
        )
        await self._store.upsert_job(job)
        self._logger.info("job_completed", chunks=statistics.get("total_chunks", 0))
        return job

    async def _fail(self, job: IngestionJob, error: str) -> IngestionJob:
        now = _utcnow()
        job = job.model_copy(
            update={
                "current_step": IngestionStep.FAILED,
                "status": JobStatus.FAILED,
                "error": error,
                "updated_at": now,
                "completed_at": now,
            }
        )
        self._logger.error("job_failed", error=error, progress=job.progress)
        try:
            await self._store.upsert_job(job)
        except DocuweaveError as exc:
            self._logger.error("job_persist_failed", error=str(exc))
        await self._tracker.update(job.job_id, IngestionStep.FAILED, job.progress, error)
        return job

    async def _retire_previous(
        self,
        document: Document,
        job_type: JobType,
        replace_existing: bool,
        archive_previous: bool,
    ) -> int:
        if job_type != JobType.REINGESTION:
            return 0
        if replace_existing:
            removed = await self._store.delete_source_versions(document.source_id, document.version)
            self._logger.info("previous_versions_deleted", chunks=removed)
            return removed
        if archive_previous:
            archived = await self._store.archive_source_versions(document.source_id, document.version)
            self._logger.info("previous_versions_archived", chunks=archived)
            return archived
        return 0

    def _reserve(self, document: Document) -> None:
        # Caller holds the source lock.
        key = (document.source_id, document.version)
        if key in self._in_flight:
            raise ValidationError(
                message=(
                    f"{document.source_id} version {document.version} is already being "
                    "ingested by another job"
                )
            )
        self._in_flight.add(key)

    def _release(self, document: Document) -> None:
        self._in_flight.discard((document.source_id, document.version))

    async def _duplicate_warnings(self, document: Document) -> list[str]:
        content_hash = document.metadata.content_hash
        warnings: list[str] = []
        if content_hash in self._active.values():
            warnings.append("Identical content is already being ingested by another job")
        twin = await self._store.find_document_by_hash(content_hash)
        if twin is not None and (twin.source_id, twin.version) != (
            document.source_id,
            document.version,
        ):
            warnings.append(
                f"Identical content already stored as {twin.source_id} version {twin.version}"
            )
        for warning in warnings:
            self._logger.warning("duplicate_content", detail=warning)
        return warnings

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _read_path(self, path: Path) -> bytes:
        allowed = self._config.ingestion.allowed_extensions
        if path.suffix.lower() not in allowed:
            raise ValidationError(
                message=f"Unsupported file type {path.suffix!r}; expected one of {', '.join(allowed)}"
            )
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise ValidationError(message=f"Cannot read {path}: {exc}") from exc

    @staticmethod
    def _document_summary(document: Document) -> dict[str, Any]:
        meta = document.metadata
        return {
            "title": document.title,
            "file_name": meta.file_name,
            "pages": meta.page_count,
            "characters": meta.character_count,
            "words": meta.word_count,
            "content_hash": meta.content_hash,
        }

    def _summary(
        self,
        document: Document,
        job: IngestionJob,
        outcome: ChunkingOutcome | None,
        batch: EmbeddingBatchResult | None,
        started: float,
    ) -> IngestionSummary:
        success = job.status == JobStatus.COMPLETED
        chunks: dict[str, Any] = {}
        if outcome is not None:
            stats = outcome.stats
            chunks = {
                "total": stats.total_chunks,
                "stored": stats.total_chunks if success else 0,
                "by_scale": stats.chunks_by_scale,
                "average_tokens": round(stats.average_tokens, 2),
                "average_quality": round(stats.average_quality, 4),
                "rejected": stats.quality_rejections,
                "refined": stats.refined_chunks,
            }
        embeddings: dict[str, Any] = {}
        if batch is not None:
            embeddings = {
                "model": batch.model,
                "dimension": batch.dimension,
                "generated": batch.generated,
                "cached": batch.cached,
                "failed": len(batch.failures),
            }
        return IngestionSummary(
            success=success,
            source_id=document.source_id,
            version=document.version,
            job_id=job.job_id,
            document=self._document_summary(document),
            chunks=chunks,
            embeddings=embeddings,
            processing_time=time.perf_counter() - started,
            error=job.error,
            warnings=list(job.warnings),
        )
