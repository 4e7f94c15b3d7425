"""Unit tests shared by the in-memory and SQLite knowledge stores."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.interfaces.knowledge_store import IKnowledgeStore
from src.models.chunk import Chunk, ChunkScale
from src.models.document import Document
from src.models.embedding import Embedding, EmbeddingType, SimilarityMetric
from src.models.ingestion import IngestionJob, JobStatus
from src.models.retrieval import RetrievalFilters
from src.providers.store.memory_store import InMemoryKnowledgeStore
from src.providers.store.sqlite_store import SQLiteKnowledgeStore
from src.utils.errors import PersistenceError


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> IKnowledgeStore:
    if request.param == "memory":
        return InMemoryKnowledgeStore()
    return SQLiteKnowledgeStore(db_path=tmp_path / "nested" / "knowledge.db")


def _document(source_id: str = "guide", version: str = "1", text: str = "Soil and compost.") -> Document:
    return Document.from_text(source_id=source_id, version=version, text=text)


def _embedding(chunk_id: str, vector: list[float], etype: EmbeddingType = EmbeddingType.CONTENT) -> Embedding:
    return Embedding(chunk_id=chunk_id, embedding_type=etype, model="test", vector=vector)


@pytest.fixture()
def chunks(make_chunk: Callable[..., Chunk]) -> list[Chunk]:
    return [
        make_chunk("Soil texture.", chunk_id="c1", scale=ChunkScale.SECTION, quality_score=0.9),
        make_chunk("Compost heaps.", chunk_id="c2", quality_score=0.5),
        make_chunk("Water butts.", chunk_id="c3", scale=ChunkScale.SENTENCE, quality_score=0.7),
    ]


async def _seed(store: IKnowledgeStore, chunks: list[Chunk]) -> None:
    await store.initialize()
    await store.write_document(
        _document(),
        chunks,
        [
            _embedding("c1", [1.0, 0.0, 0.0]),
            _embedding("c2", [0.8, 0.6, 0.0]),
            _embedding("c3", [0.0, 0.0, 1.0]),
        ],
    )


# ======================================================================
# Documents and chunks
# ======================================================================


class TestDocumentsAndChunks:
    @pytest.mark.asyncio
    async def test_initialize_creates_parent_dirs(self, tmp_path: Path) -> None:
        store = SQLiteKnowledgeStore(db_path=tmp_path / "a" / "b" / "k.db")
        await store.initialize()
        assert (tmp_path / "a" / "b" / "k.db").exists()

    @pytest.mark.asyncio
    async def test_document_round_trip(self, store: IKnowledgeStore) -> None:
        await store.initialize()
        document = _document()
        await store.upsert_document(document)

        assert await store.get_document("guide", "1") == document
        assert await store.get_document("guide", "2") is None
        found = await store.find_document_by_hash(document.metadata.content_hash)
        assert found is not None and found.source_id == "guide"
        assert await store.find_document_by_hash("0" * 64) is None

    @pytest.mark.asyncio
    async def test_write_and_read_chunks(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)

        fetched = await store.get_chunks(["c3", "missing", "c1"])
        assert [c.chunk_id for c in fetched] == ["c3", "c1"]
        assert fetched[1] == chunks[0]

        stored = [c.chunk_id async for c in store.iter_chunks()]
        assert sorted(stored) == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_iter_chunks_filters(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)

        quality = [c.chunk_id async for c in store.iter_chunks(RetrievalFilters(min_quality=0.6))]
        scales = [
            c.chunk_id
            async for c in store.iter_chunks(RetrievalFilters(scales=[ChunkScale.SENTENCE]))
        ]
        other = [c async for c in store.iter_chunks(RetrievalFilters(source_ids=["other"]))]

        assert sorted(quality) == ["c1", "c3"]
        assert scales == ["c3"]
        assert other == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch_rejected_atomically(
        self, store: IKnowledgeStore, chunks, make_chunk
    ) -> None:
        await _seed(store, chunks)
        stray = make_chunk("Different width.", chunk_id="c9", source_id="wide")

        with pytest.raises(PersistenceError, match="dimension"):
            await store.write_document(
                _document(source_id="wide"), [stray], [_embedding("c9", [1.0, 0.0])]
            )

        assert await store.get_document("wide", "1") is None
        assert await store.get_chunks(["c9"]) == []

    @pytest.mark.asyncio
    async def test_version_with_different_chunk_set_rejected(
        self, store: IKnowledgeStore, chunks, make_chunk
    ) -> None:
        await _seed(store, chunks)
        rival = make_chunk("A rival chunking of the same version.", chunk_id="c9")

        with pytest.raises(PersistenceError, match="different chunk set"):
            await store.write_document(_document(), [rival], [])

        assert await store.get_chunks(["c9"]) == []
        await store.write_document(_document(), chunks, [])
        stored = [c.chunk_id async for c in store.iter_chunks()]
        assert sorted(stored) == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_memory_store_rejects_unknown_chunk(self) -> None:
        store = InMemoryKnowledgeStore()
        with pytest.raises(PersistenceError, match="unknown chunk"):
            await store.write_document(_document(), [], [_embedding("ghost", [1.0])])
        assert await store.get_document("guide", "1") is None


# ======================================================================
# Similarity search
# ======================================================================


class TestNearest:
    @pytest.mark.asyncio
    async def test_cosine_order(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)
        hits = await store.nearest([1.0, 0.0, 0.0], SimilarityMetric.COSINE, k=3)

        assert [c.chunk_id for c, _ in hits] == ["c1", "c2", "c3"]
        assert [s for _, s in hits] == pytest.approx([1.0, 0.8, 0.0])

    @pytest.mark.asyncio
    async def test_k_and_filters(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)

        top = await store.nearest([1.0, 0.0, 0.0], SimilarityMetric.COSINE, k=1)
        filtered = await store.nearest(
            [1.0, 0.0, 0.0],
            SimilarityMetric.COSINE,
            k=3,
            filters=RetrievalFilters(scales=[ChunkScale.PARAGRAPH]),
        )
        assert [c.chunk_id for c, _ in top] == ["c1"]
        assert [c.chunk_id for c, _ in filtered] == ["c2"]
        assert await store.nearest([1.0, 0.0, 0.0], SimilarityMetric.COSINE, k=0) == []

    @pytest.mark.asyncio
    async def test_other_type_and_dimension_ignored(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)
        assert await store.nearest(
            [1.0, 0.0, 0.0], SimilarityMetric.COSINE, k=3, embedding_type=EmbeddingType.SEMANTIC
        ) == []
        assert await store.nearest([1.0, 0.0], SimilarityMetric.COSINE, k=3) == []

    @pytest.mark.asyncio
    async def test_dot_product(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)
        hits = await store.nearest([0.0, 2.0, 0.0], SimilarityMetric.DOT_PRODUCT, k=1)
        assert hits[0][0].chunk_id == "c2"
        assert hits[0][1] == pytest.approx(1.2)


# ======================================================================
# Version lifecycle
# ======================================================================


class TestVersions:
    @pytest.mark.asyncio
    async def test_archive_previous_versions(self, store: IKnowledgeStore, chunks, make_chunk) -> None:
        await _seed(store, chunks)
        newer = make_chunk("Soil texture, revised.", chunk_id="v2", version="2")
        await store.write_document(_document(version="2"), [newer], [_embedding("v2", [1.0, 0.0, 0.0])])

        assert await store.archive_source_versions("guide", keep_version="2") == 3
        assert await store.archive_source_versions("guide", keep_version="2") == 0

        live = [c.chunk_id async for c in store.iter_chunks()]
        assert live == ["v2"]
        archived = await store.get_chunks(["c1"])
        assert archived[0].archived is True
        hits = await store.nearest([1.0, 0.0, 0.0], SimilarityMetric.COSINE, k=5)
        assert [c.chunk_id for c, _ in hits] == ["v2"]

    @pytest.mark.asyncio
    async def test_delete_previous_versions(self, store: IKnowledgeStore, chunks, make_chunk) -> None:
        await _seed(store, chunks)
        newer = make_chunk("Soil texture, revised.", chunk_id="v2", version="2")
        await store.write_document(_document(version="2"), [newer], [_embedding("v2", [1.0, 0.0, 0.0])])

        assert await store.delete_source_versions("guide", keep_version="2") == 3
        assert await store.get_chunks(["c1", "c2", "c3"]) == []
        stats = await store.get_stats()
        assert stats.total_chunks == 1
        assert stats.total_embeddings == 1


# ======================================================================
# Jobs and statistics
# ======================================================================


class TestJobsAndStats:
    @pytest.mark.asyncio
    async def test_job_upsert_and_listing(self, store: IKnowledgeStore) -> None:
        await store.initialize()
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)  # noqa: UP017
        older = IngestionJob(job_id="j1", source_id="guide", version="1", created_at=base)
        newer = IngestionJob(
            job_id="j2", source_id="notes", version="1", created_at=base + timedelta(minutes=5)
        )
        await store.upsert_job(older)
        await store.upsert_job(newer)
        await store.upsert_job(older.model_copy(update={"status": JobStatus.COMPLETED, "progress": 100.0}))

        assert (await store.get_job("j1")).status == JobStatus.COMPLETED
        assert await store.get_job("missing") is None
        assert [j.job_id for j in await store.list_jobs()] == ["j2", "j1"]
        assert [j.job_id for j in await store.list_jobs(status=JobStatus.COMPLETED)] == ["j1"]
        assert [j.job_id for j in await store.list_jobs(source_id="notes")] == ["j2"]

    @pytest.mark.asyncio
    async def test_source_statistics_increment(self, store: IKnowledgeStore) -> None:
        await store.initialize()
        await store.update_source_statistics("guide", "1", documents=1, chunks=10, embeddings=20)
        stats = await store.update_source_statistics("guide", "2", documents=1, chunks=4, embeddings=8)

        assert stats.document_count == 2
        assert stats.chunk_count == 14
        assert stats.embedding_count == 28
        assert stats.last_version == "2"
        assert await store.get_source_statistics("guide") == stats
        assert await store.get_source_statistics("unknown") is None

    @pytest.mark.asyncio
    async def test_corpus_stats(self, store: IKnowledgeStore, chunks) -> None:
        await _seed(store, chunks)
        await store.upsert_job(IngestionJob(job_id="j1", source_id="guide", version="1"))

        stats = await store.get_stats()
        assert stats.total_documents == 1
        assert stats.total_sources == 1
        assert stats.total_chunks == 3
        assert stats.total_embeddings == 3
        assert stats.chunks_by_scale == {"section": 1, "paragraph": 1, "sentence": 1}
        assert stats.embeddings_by_type == {"content": 3}
        assert stats.jobs_by_status == {"pending": 1}

    def test_provider_names(self, tmp_path: Path) -> None:
        assert InMemoryKnowledgeStore().get_provider_name() == "memory_store"
        assert SQLiteKnowledgeStore(tmp_path / "k.db").get_provider_name() == "sqlite_store"
