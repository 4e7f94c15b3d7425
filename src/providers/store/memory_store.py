"""Dict-backed knowledge store.

Everything lives in process memory.  ``write_document`` validates the whole
batch before touching any dict, and no ``await`` happens between the first
and last mutation, so a failed write leaves the store unchanged.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timezone

import numpy as np
import structlog

from src.interfaces.knowledge_store import IKnowledgeStore
from src.models.chunk import Chunk
from src.models.document import Document
from src.models.embedding import Embedding, EmbeddingType, SimilarityMetric
from src.models.ingestion import CorpusStats, IngestionJob, JobStatus, SourceStatistics
from src.models.retrieval import RetrievalFilters
from src.utils.errors import PersistenceError
from src.utils.similarity import similarity_matrix

logger = structlog.get_logger(logger_name=__name__)


class InMemoryKnowledgeStore(IKnowledgeStore):
    """Knowledge store held entirely in dictionaries."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], Document] = {}
        self._chunks: dict[str, Chunk] = {}
        self._embeddings: dict[tuple[str, EmbeddingType], Embedding] = {}
        self._dimensions: dict[EmbeddingType, int] = {}
        self._jobs: dict[str, IngestionJob] = {}
        self._source_stats: dict[str, SourceStatistics] = {}
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.debug("memory_store_initialized")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upsert_document(self, document: Document) -> None:
        self._documents[(document.source_id, document.version)] = document

    async def get_document(self, source_id: str, version: str) -> Document | None:
        return self._documents.get((source_id, version))

    async def find_document_by_hash(self, content_hash: str) -> Document | None:
        for document in self._documents.values():
            if document.metadata.content_hash == content_hash:
                return document
        return None

    async def write_document(
        self,
        document: Document,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Embedding],
    ) -> None:
        async with self._write_lock:
            chunk_ids = {c.chunk_id for c in chunks}
            key = (document.source_id, document.version)
            stored = {cid for cid, c in self._chunks.items() if (c.source_id, c.version) == key}
            if stored and stored != chunk_ids:
                raise PersistenceError(
                    message=(
                        f"{document.source_id} version {document.version} is already stored "
                        "with a different chunk set"
                    ),
                    provider_name=self.get_provider_name(),
                )
            dimensions = dict(self._dimensions)
            for emb in embeddings:
                if emb.chunk_id not in chunk_ids and emb.chunk_id not in self._chunks:
                    raise PersistenceError(
                        message=f"embedding references unknown chunk {emb.chunk_id}",
                        provider_name=self.get_provider_name(),
                    )
                expected = dimensions.setdefault(emb.embedding_type, emb.dimension)
                if emb.dimension != expected:
                    raise PersistenceError(
                        message=(
                            f"{emb.embedding_type.value} embedding dimension {emb.dimension} "
                            f"does not match stored dimension {expected}"
                        ),
                        provider_name=self.get_provider_name(),
                    )

            # Validation passed: apply every mutation without yielding.
            self._documents[(document.source_id, document.version)] = document
            for chunk in chunks:
                self._chunks[chunk.chunk_id] = chunk
            for emb in embeddings:
                self._embeddings[emb.key] = emb
            self._dimensions = dimensions

        logger.debug(
            "document_written",
            source_id=document.source_id,
            version=document.version,
            chunks=len(chunks),
            embeddings=len(embeddings),
        )

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def get_chunks(self, chunk_ids: Sequence[str]) -> list[Chunk]:
        return [self._chunks[cid] for cid in chunk_ids if cid in self._chunks]

    async def iter_chunks(self, filters: RetrievalFilters | None = None) -> AsyncIterator[Chunk]:
        filters = filters or RetrievalFilters()
        for chunk in list(self._chunks.values()):
            if filters.matches(chunk):
                yield chunk

    async def nearest(
        self,
        vector: Sequence[float],
        metric: SimilarityMetric,
        k: int,
        filters: RetrievalFilters | None = None,
        embedding_type: EmbeddingType = EmbeddingType.CONTENT,
    ) -> list[tuple[Chunk, float]]:
        filters = filters or RetrievalFilters()
        candidates: list[Chunk] = []
        rows: list[list[float]] = []
        for (chunk_id, etype), emb in self._embeddings.items():
            if etype != embedding_type or emb.dimension != len(vector):
                continue
            chunk = self._chunks.get(chunk_id)
            if chunk is None or not filters.matches(chunk):
                continue
            candidates.append(chunk)
            rows.append(emb.vector)

        if not candidates or k <= 0:
            return []
        scores = similarity_matrix(vector, np.asarray(rows, dtype=np.float64), metric)
        order = np.argsort(-scores, kind="stable")[:k]
        return [(candidates[i], float(scores[i])) for i in order]

    async def delete_source_versions(self, source_id: str, keep_version: str) -> int:
        doomed = [
            cid
            for cid, c in self._chunks.items()
            if c.source_id == source_id and c.version != keep_version
        ]
        for cid in doomed:
            del self._chunks[cid]
        doomed_ids = set(doomed)
        for key in [k for k in self._embeddings if k[0] in doomed_ids]:
            del self._embeddings[key]
        return len(doomed)

    async def archive_source_versions(self, source_id: str, keep_version: str) -> int:
        archived = 0
        for cid, chunk in list(self._chunks.items()):
            if chunk.source_id == source_id and chunk.version != keep_version and not chunk.archived:
                self._chunks[cid] = chunk.model_copy(update={"archived": True})
                archived += 1
        return archived

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def upsert_job(self, job: IngestionJob) -> None:
        self._jobs[job.job_id] = job

    async def get_job(self, job_id: str) -> IngestionJob | None:
        return self._jobs.get(job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
    ) -> list[IngestionJob]:
        jobs = [
            j
            for j in self._jobs.values()
            if (status is None or j.status == status)
            and (source_id is None or j.source_id == source_id)
        ]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def update_source_statistics(
        self,
        source_id: str,
        version: str,
        documents: int = 0,
        chunks: int = 0,
        embeddings: int = 0,
    ) -> SourceStatistics:
        current = self._source_stats.get(source_id) or SourceStatistics(source_id=source_id)
        updated = current.model_copy(
            update={
                "document_count": current.document_count + documents,
                "chunk_count": current.chunk_count + chunks,
                "embedding_count": current.embedding_count + embeddings,
                "last_version": version,
                "updated_at": datetime.now(tz=timezone.utc),  # noqa: UP017
            }
        )
        self._source_stats[source_id] = updated
        return updated

    async def get_source_statistics(self, source_id: str) -> SourceStatistics | None:
        return self._source_stats.get(source_id)

    async def get_stats(self) -> CorpusStats:
        return CorpusStats(
            total_documents=len(self._documents),
            total_sources=len({sid for sid, _ in self._documents}),
            total_chunks=len(self._chunks),
            total_embeddings=len(self._embeddings),
            chunks_by_scale=dict(Counter(c.scale.value for c in self._chunks.values())),
            embeddings_by_type=dict(Counter(t.value for _, t in self._embeddings)),
            jobs_by_status=dict(Counter(j.status.value for j in self._jobs.values())),
        )

    def get_provider_name(self) -> str:
        return "memory_store"
