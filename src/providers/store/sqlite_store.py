"""SQLite-backed knowledge store.

Persists documents, chunks, embeddings, ingestion jobs and per-source
statistics to one SQLite file through ``aiosqlite``.  Vectors are stored as
float64 blobs and scored with numpy at query time; the corpus sizes this
store targets fit comfortably in one scan.

``write_document`` runs in a single transaction: any failure rolls back
every row written for that document.  Source statistics are incremented
with ``SET x = x + excluded.x`` so concurrent writers never lose an update.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

import aiosqlite
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

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    source_id    TEXT NOT NULL,
    version      TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    payload      TEXT NOT NULL,
    created_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    PRIMARY KEY (source_id, version)
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id      TEXT PRIMARY KEY,
    source_id     TEXT    NOT NULL,
    version       TEXT    NOT NULL,
    scale         TEXT    NOT NULL,
    position      INTEGER NOT NULL,
    quality_score REAL    NOT NULL,
    archived      INTEGER NOT NULL DEFAULT 0,
    payload       TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS embeddings (
    chunk_id       TEXT    NOT NULL,
    embedding_type TEXT    NOT NULL,
    model          TEXT    NOT NULL,
    dimension      INTEGER NOT NULL,
    vector         BLOB    NOT NULL,
    PRIMARY KEY (chunk_id, embedding_type)
);
""",
    """\
CREATE TABLE IF NOT EXISTS jobs (
    job_id     TEXT PRIMARY KEY,
    source_id  TEXT NOT NULL,
    status     TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS source_statistics (
    source_id       TEXT PRIMARY KEY,
    document_count  INTEGER NOT NULL DEFAULT 0,
    chunk_count     INTEGER NOT NULL DEFAULT 0,
    embedding_count INTEGER NOT NULL DEFAULT 0,
    last_version    TEXT    NOT NULL DEFAULT '',
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(content_hash);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_id, version);",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_type ON embeddings(embedding_type, dimension);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);",
]

_UPSERT_DOCUMENT_SQL = """\
INSERT INTO documents (source_id, version, content_hash, payload)
VALUES (?, ?, ?, ?)
ON CONFLICT(source_id, version)
DO UPDATE SET content_hash = excluded.content_hash,
              payload      = excluded.payload;
"""

_UPSERT_CHUNK_SQL = """\
INSERT INTO chunks (chunk_id, source_id, version, scale, position, quality_score, archived, payload)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(chunk_id)
DO UPDATE SET payload       = excluded.payload,
              quality_score = excluded.quality_score,
              archived      = excluded.archived;
"""

_UPSERT_EMBEDDING_SQL = """\
INSERT INTO embeddings (chunk_id, embedding_type, model, dimension, vector)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(chunk_id, embedding_type)
DO UPDATE SET model     = excluded.model,
              dimension = excluded.dimension,
              vector    = excluded.vector;
"""

_UPSERT_JOB_SQL = """\
INSERT INTO jobs (job_id, source_id, status, created_at, payload)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(job_id)
DO UPDATE SET status  = excluded.status,
              payload = excluded.payload;
"""

_INCREMENT_STATS_SQL = """\
INSERT INTO source_statistics (source_id, document_count, chunk_count, embedding_count, last_version)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(source_id)
DO UPDATE SET document_count  = document_count + excluded.document_count,
              chunk_count     = chunk_count + excluded.chunk_count,
              embedding_count = embedding_count + excluded.embedding_count,
              last_version    = excluded.last_version,
              updated_at      = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_SELECT_STATS_SQL = """\
SELECT source_id, document_count, chunk_count, embedding_count, last_version, updated_at
FROM source_statistics WHERE source_id = ?;
"""

_DIMENSION_SQL = "SELECT dimension FROM embeddings WHERE embedding_type = ? LIMIT 1;"

_VERSION_CHUNKS_SQL = "SELECT chunk_id FROM chunks WHERE source_id = ? AND version = ?;"


def _encode_vector(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float64).tobytes()


def _decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float64)


def _chunk_from_row(row: aiosqlite.Row) -> Chunk:
    chunk = Chunk.model_validate_json(row["payload"])
    archived = bool(row["archived"])
    return chunk if chunk.archived == archived else chunk.model_copy(update={"archived": archived})


def _filter_clause(filters: RetrievalFilters | None, alias: str = "c") -> tuple[str, list[Any]]:
    """Build a ``WHERE`` fragment (without the keyword) for *filters*."""
    filters = filters or RetrievalFilters()
    clauses: list[str] = []
    params: list[Any] = []
    if not filters.include_archived:
        clauses.append(f"{alias}.archived = 0")
    if filters.source_ids is not None:
        if not filters.source_ids:
            clauses.append("0")
        else:
            clauses.append(f"{alias}.source_id IN ({', '.join('?' for _ in filters.source_ids)})")
            params.extend(filters.source_ids)
    if filters.min_quality is not None:
        clauses.append(f"{alias}.quality_score >= ?")
        params.append(filters.min_quality)
    if filters.scales is not None:
        if not filters.scales:
            clauses.append("0")
        else:
            clauses.append(f"{alias}.scale IN ({', '.join('?' for _ in filters.scales)})")
            params.extend(s.value for s in filters.scales)
    return (" AND ".join(clauses) or "1"), params


class SQLiteKnowledgeStore(IKnowledgeStore):
    """Durable knowledge store on a single SQLite file.

    Parameters
    ----------
    db_path:
        Path to the database file; parent directories are created.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            for sql in _CREATE_TABLES_SQL:
                await db.execute(sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("knowledge_db_initialized", path=str(self._db_path))

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upsert_document(self, document: Document) -> None:
        async with self._connect() as db:
            await db.execute(
                _UPSERT_DOCUMENT_SQL,
                (
                    document.source_id,
                    document.version,
                    document.metadata.content_hash,
                    document.model_dump_json(),
                ),
            )
            await db.commit()

    async def get_document(self, source_id: str, version: str) -> Document | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT payload FROM documents WHERE source_id = ? AND version = ?;",
                (source_id, version),
            )
            row = await cursor.fetchone()
        return Document.model_validate_json(row[0]) if row else None

    async def find_document_by_hash(self, content_hash: str) -> Document | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT payload FROM documents WHERE content_hash = ? LIMIT 1;",
                (content_hash,),
            )
            row = await cursor.fetchone()
        return Document.model_validate_json(row[0]) if row else None

    async def write_document(
        self,
        document: Document,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Embedding],
    ) -> None:
        try:
            async with self._connect() as db:
                try:
                    await self._check_chunk_set(db, document, chunks)
                    await self._check_dimensions(db, embeddings)
                    await db.execute(
                        _UPSERT_DOCUMENT_SQL,
                        (
                            document.source_id,
                            document.version,
                            document.metadata.content_hash,
                            document.model_dump_json(),
                        ),
                    )
                    await db.executemany(
                        _UPSERT_CHUNK_SQL,
                        [
                            (
                                c.chunk_id,
                                c.source_id,
                                c.version,
                                c.scale.value,
                                c.position,
                                c.quality_score,
                                int(c.archived),
                                c.model_dump_json(),
                            )
                            for c in chunks
                        ],
                    )
                    await db.executemany(
                        _UPSERT_EMBEDDING_SQL,
                        [
                            (
                                e.chunk_id,
                                e.embedding_type.value,
                                e.model,
                                e.dimension,
                                _encode_vector(e.vector),
                            )
                            for e in embeddings
                        ],
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        except PersistenceError:
            raise
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceError(
                message=f"failed to write {document.source_id}@{document.version}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.debug(
            "document_written",
            source_id=document.source_id,
            version=document.version,
            chunks=len(chunks),
            embeddings=len(embeddings),
        )

    async def _check_chunk_set(
        self, db: aiosqlite.Connection, document: Document, chunks: Sequence[Chunk]
    ) -> None:
        cursor = await db.execute(_VERSION_CHUNKS_SQL, (document.source_id, document.version))
        stored = {row[0] for row in await cursor.fetchall()}
        if stored and stored != {c.chunk_id for c in chunks}:
            raise PersistenceError(
                message=(
                    f"{document.source_id} version {document.version} is already stored "
                    "with a different chunk set"
                ),
                provider_name=self.get_provider_name(),
            )

    async def _check_dimensions(
        self, db: aiosqlite.Connection, embeddings: Sequence[Embedding]
    ) -> None:
        expected: dict[EmbeddingType, int] = {}
        for emb in embeddings:
            if emb.embedding_type not in expected:
                cursor = await db.execute(_DIMENSION_SQL, (emb.embedding_type.value,))
                row = await cursor.fetchone()
                expected[emb.embedding_type] = row[0] if row else emb.dimension
            if emb.dimension != expected[emb.embedding_type]:
                raise PersistenceError(
                    message=(
                        f"{emb.embedding_type.value} embedding dimension {emb.dimension} "
                        f"does not match stored dimension {expected[emb.embedding_type]}"
                    ),
                    provider_name=self.get_provider_name(),
                )

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def get_chunks(self, chunk_ids: Sequence[str]) -> list[Chunk]:
        if not chunk_ids:
            return []
        placeholders = ", ".join("?" for _ in chunk_ids)
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT payload, archived, chunk_id FROM chunks WHERE chunk_id IN ({placeholders});",  # noqa: S608
                list(chunk_ids),
            )
            rows = await cursor.fetchall()
        by_id = {row["chunk_id"]: _chunk_from_row(row) for row in rows}
        return [by_id[cid] for cid in chunk_ids if cid in by_id]

    async def iter_chunks(self, filters: RetrievalFilters | None = None) -> AsyncIterator[Chunk]:
        where, params = _filter_clause(filters)
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT c.payload, c.archived FROM chunks c WHERE {where} ORDER BY c.source_id, c.position;",  # noqa: S608
                params,
            ) as cursor:
                async for row in cursor:
                    yield _chunk_from_row(row)

    async def nearest(
        self,
        vector: Sequence[float],
        metric: SimilarityMetric,
        k: int,
        filters: RetrievalFilters | None = None,
        embedding_type: EmbeddingType = EmbeddingType.CONTENT,
    ) -> list[tuple[Chunk, float]]:
        if k <= 0:
            return []
        where, params = _filter_clause(filters)
        sql = (
            "SELECT c.payload, c.archived, e.vector FROM embeddings e "
            "JOIN chunks c ON c.chunk_id = e.chunk_id "
            f"WHERE e.embedding_type = ? AND e.dimension = ? AND {where};"
        )
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, [embedding_type.value, len(vector), *params])
            rows = await cursor.fetchall()

        if not rows:
            return []
        matrix = np.vstack([_decode_vector(row["vector"]) for row in rows])
        scores = similarity_matrix(vector, matrix, metric)
        order = np.argsort(-scores, kind="stable")[:k]
        return [(_chunk_from_row(rows[i]), float(scores[i])) for i in order]

    async def delete_source_versions(self, source_id: str, keep_version: str) -> int:
        async with self._connect() as db:
            await db.execute(
                "DELETE FROM embeddings WHERE chunk_id IN "
                "(SELECT chunk_id FROM chunks WHERE source_id = ? AND version != ?);",
                (source_id, keep_version),
            )
            cursor = await db.execute(
                "DELETE FROM chunks WHERE source_id = ? AND version != ?;",
                (source_id, keep_version),
            )
            removed = cursor.rowcount
            await db.commit()
        return removed

    async def archive_source_versions(self, source_id: str, keep_version: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE chunks SET archived = 1 "
                "WHERE source_id = ? AND version != ? AND archived = 0;",
                (source_id, keep_version),
            )
            archived = cursor.rowcount
            await db.commit()
        return archived

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def upsert_job(self, job: IngestionJob) -> None:
        async with self._connect() as db:
            await db.execute(
                _UPSERT_JOB_SQL,
                (
                    job.job_id,
                    job.source_id,
                    job.status.value,
                    job.created_at.isoformat(),
                    job.model_dump_json(),
                ),
            )
            await db.commit()

    async def get_job(self, job_id: str) -> IngestionJob | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT payload FROM jobs WHERE job_id = ?;", (job_id,))
            row = await cursor.fetchone()
        return IngestionJob.model_validate_json(row[0]) if row else None

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
    ) -> list[IngestionJob]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        where = " AND ".join(clauses) or "1"
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT payload FROM jobs WHERE {where} ORDER BY created_at DESC;",  # noqa: S608
                params,
            )
            rows = await cursor.fetchall()
        return [IngestionJob.model_validate_json(r[0]) for r in rows]

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
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            await db.execute(
                _INCREMENT_STATS_SQL,
                (source_id, documents, chunks, embeddings, version),
            )
            await db.commit()
            cursor = await db.execute(_SELECT_STATS_SQL, (source_id,))
            row = await cursor.fetchone()
        return SourceStatistics(**dict(row))

    async def get_source_statistics(self, source_id: str) -> SourceStatistics | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_STATS_SQL, (source_id,))
            row = await cursor.fetchone()
        return SourceStatistics(**dict(row)) if row else None

    async def get_stats(self) -> CorpusStats:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*), COUNT(DISTINCT source_id) FROM documents;"
            )
            total_documents, total_sources = await cursor.fetchone()
            cursor = await db.execute("SELECT scale, COUNT(*) FROM chunks GROUP BY scale;")
            chunks_by_scale = {scale: count for scale, count in await cursor.fetchall()}
            cursor = await db.execute(
                "SELECT embedding_type, COUNT(*) FROM embeddings GROUP BY embedding_type;"
            )
            embeddings_by_type = {etype: count for etype, count in await cursor.fetchall()}
            cursor = await db.execute("SELECT status, COUNT(*) FROM jobs GROUP BY status;")
            jobs_by_status = {status: count for status, count in await cursor.fetchall()}

        return CorpusStats(
            total_documents=total_documents,
            total_sources=total_sources,
            total_chunks=sum(chunks_by_scale.values()),
            total_embeddings=sum(embeddings_by_type.values()),
            chunks_by_scale=chunks_by_scale,
            embeddings_by_type=embeddings_by_type,
            jobs_by_status=jobs_by_status,
        )

    def get_provider_name(self) -> str:
        return "sqlite_store"
