"""Abstract base class for the knowledge store.

The knowledge store persists documents, chunks, embeddings, ingestion jobs
and per-source statistics, and answers nearest-neighbour queries over the
stored embeddings.  It is the only persistence collaborator the pipeline
talks to; transaction mechanics belong to the adapter.

**Filters** (``RetrievalFilters``) are applied inside the store:

* ``source_ids`` -- restrict to these sources.
* ``min_quality`` -- drop chunks whose quality score is lower.
* ``scales`` -- restrict to these chunk scales.
* ``include_archived`` -- archived chunks (older versions superseded by a
  reingestion) are excluded unless this is set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from src.models.chunk import Chunk
from src.models.document import Document
from src.models.embedding import Embedding, EmbeddingType, SimilarityMetric
from src.models.ingestion import CorpusStats, IngestionJob, JobStatus, SourceStatistics
from src.models.retrieval import RetrievalFilters


# Concrete implementations (src/providers/store/):
#   InMemoryKnowledgeStore -- dict-backed, for tests and single-process use
#   SQLiteKnowledgeStore   -- aiosqlite, durable
class IKnowledgeStore(ABC):
    """Contract for the document/chunk/embedding/job store.

    All methods are async.  Methods that write several rows
    (:meth:`write_document`) must be all-or-nothing: either every row is
    visible afterwards or none is.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables / structures if they do not exist yet."""

    # -- documents ---------------------------------------------------------

    @abstractmethod
    async def upsert_document(self, document: Document) -> None:
        """Insert or replace the document record for ``(source_id, version)``."""

    @abstractmethod
    async def get_document(self, source_id: str, version: str) -> Document | None:
        """Return the stored document, or ``None``."""

    @abstractmethod
    async def find_document_by_hash(self, content_hash: str) -> Document | None:
        """Return any stored document whose text has this sha256 hash."""

    @abstractmethod
    async def write_document(
        self,
        document: Document,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Embedding],
    ) -> None:
        """Persist a document with its chunks and embeddings atomically.

        Raises
        ------
        src.utils.errors.PersistenceError
            If any write fails (nothing is persisted) or an embedding's
            dimension differs from the one already stored for its type.
        """

    # -- chunks ------------------------------------------------------------

    @abstractmethod
    async def get_chunks(self, chunk_ids: Sequence[str]) -> list[Chunk]:
        """Return the chunks with these ids, in the requested order, skipping misses."""

    @abstractmethod
    def iter_chunks(self, filters: RetrievalFilters | None = None) -> AsyncIterator[Chunk]:
        """Yield every stored chunk that passes *filters*."""

    @abstractmethod
    async def nearest(
        self,
        vector: Sequence[float],
        metric: SimilarityMetric,
        k: int,
        filters: RetrievalFilters | None = None,
        embedding_type: EmbeddingType = EmbeddingType.CONTENT,
    ) -> list[tuple[Chunk, float]]:
        """Return up to *k* ``(chunk, similarity)`` pairs, most similar first.

        Only embeddings of *embedding_type* with the query's dimension are
        considered.
        """

    @abstractmethod
    async def delete_source_versions(self, source_id: str, keep_version: str) -> int:
        """Delete chunks and embeddings of every version except *keep_version*.

        Returns the number of chunks removed.
        """

    @abstractmethod
    async def archive_source_versions(self, source_id: str, keep_version: str) -> int:
        """Mark chunks of every version except *keep_version* archived.

        Returns the number of chunks archived.
        """

    # -- jobs --------------------------------------------------------------

    @abstractmethod
    async def upsert_job(self, job: IngestionJob) -> None:
        """Insert or replace the job record."""

    @abstractmethod
    async def get_job(self, job_id: str) -> IngestionJob | None:
        """Return the job, or ``None``."""

    @abstractmethod
    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
    ) -> list[IngestionJob]:
        """Jobs matching the optional filters, newest first."""

    # -- statistics ----------------------------------------------------------

    @abstractmethod
    async def update_source_statistics(
        self,
        source_id: str,
        version: str,
        documents: int = 0,
        chunks: int = 0,
        embeddings: int = 0,
    ) -> SourceStatistics:
        """Increment the per-source counters and return the new record."""

    @abstractmethod
    async def get_source_statistics(self, source_id: str) -> SourceStatistics | None:
        """Return the per-source counters, or ``None`` if never ingested."""

    @abstractmethod
    async def get_stats(self) -> CorpusStats:
        """Return a snapshot of the corpus size and composition."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Short identifier, e.g. ``"sqlite_store"``."""
