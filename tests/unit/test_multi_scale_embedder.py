"""Unit tests for MultiScaleEmbedder -- text builders, caching, retries and boosts."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from src.config.pipeline_config import EmbeddingConfig
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.chunk import Chunk
from src.models.embedding import EmbeddingType
from src.services.embedding.multi_scale_embedder import (
    MultiScaleEmbedder,
    cache_key,
    matched_domain_terms,
    semantic_annotations,
)
from src.utils.errors import JobCancelledError, ProviderError

_FAST = {"retry_backoff_seconds": 0.0, "timeout_seconds": 5.0}


class _SlowProvider(IEmbeddingProvider):
    async def embed(self, text: str, model: str) -> list[float]:
        await asyncio.sleep(1.0)
        return [1.0]

    def get_provider_name(self) -> str:
        return "slow"

    def is_available(self) -> bool:
        return True


class _NaNProvider(_SlowProvider):
    async def embed(self, text: str, model: str) -> list[float]:
        return [float("nan"), 1.0]

    def get_provider_name(self) -> str:
        return "nan"


# ======================================================================
# Text builders
# ======================================================================


class TestBuildText:
    @pytest.fixture()
    def chunk(self, make_chunk: Callable[..., Chunk]) -> Chunk:
        return make_chunk("Compost feeds the soil with organic matter.")

    def test_content_is_raw_text(self, embedder: MultiScaleEmbedder, chunk: Chunk) -> None:
        assert embedder.build_text(chunk, EmbeddingType.CONTENT) == chunk.content

    def test_contextual(self, embedder: MultiScaleEmbedder, chunk: Chunk) -> None:
        text = embedder.build_text(chunk, EmbeddingType.CONTEXTUAL)
        assert text == f"Context: Composting\n\nSection: Composting\n\n{chunk.content}"

    def test_hierarchical(self, embedder: MultiScaleEmbedder, chunk: Chunk) -> None:
        text = embedder.build_text(chunk, EmbeddingType.HIERARCHICAL)
        assert text == (
            "Document Structure: Composting > Lead\n\n"
            "Content Level: paragraph\n\n"
            "Section: Composting\n\n"
            f"{chunk.content}"
        )

    def test_semantic_uses_extracted_keywords(
        self, embedder: MultiScaleEmbedder, chunk: Chunk
    ) -> None:
        text = embedder.build_text(chunk, EmbeddingType.SEMANTIC)
        assert text.startswith("Key Concepts: compost")
        assert chunk.content in text
        assert text.endswith(
            "Semantic Context: scale:paragraph, length:short, structure:sectioned"
        )

    def test_semantic_prefers_domain_vocabulary(
        self, embedding_provider: IEmbeddingProvider, chunk: Chunk
    ) -> None:
        config = EmbeddingConfig(domain_keywords=("organic matter", "mulch"), **_FAST)
        text = MultiScaleEmbedder(embedding_provider, config).build_text(
            chunk, EmbeddingType.SEMANTIC
        )
        assert text.startswith("Key Concepts: organic matter\n\n")

    def test_semantic_annotations_buckets(self, make_chunk: Callable[..., Chunk]) -> None:
        long_nested = make_chunk(token_count=600, hierarchy_path=["A", "B", "C"])
        flat_medium = make_chunk(token_count=200, hierarchy_path=["A"])
        assert semantic_annotations(long_nested)[1:] == ["length:long", "structure:nested"]
        assert semantic_annotations(flat_medium)[1:] == ["length:medium", "structure:flat"]

    def test_matched_domain_terms_case_insensitive(self) -> None:
        assert matched_domain_terms("Use MULCH generously", ["mulch", "compost"]) == ["mulch"]

    def test_cache_key_separates_model_and_type(self) -> None:
        base = cache_key("text", "m1", EmbeddingType.CONTENT)
        assert base.endswith(":m1:content")
        assert base != cache_key("text", "m2", EmbeddingType.CONTENT)
        assert base != cache_key("text", "m1", EmbeddingType.SEMANTIC)


# ======================================================================
# Embedding chunks
# ======================================================================


class TestEmbedChunks:
    @pytest.mark.asyncio
    async def test_one_embedding_per_chunk_and_type(
        self,
        embedding_provider: IEmbeddingProvider,
        make_chunk: Callable[..., Chunk],
    ) -> None:
        chunks = [make_chunk(), make_chunk("Mulch keeps the ground moist in summer.")]
        embedder = MultiScaleEmbedder(embedding_provider, EmbeddingConfig(**_FAST))

        result = await embedder.embed_chunks(
            chunks, [EmbeddingType.CONTENT, EmbeddingType.CONTEXTUAL]
        )

        assert result.generated == 4
        assert {e.key for e in result.embeddings} == {
            (c.chunk_id, t)
            for c in chunks
            for t in (EmbeddingType.CONTENT, EmbeddingType.CONTEXTUAL)
        }
        assert result.dimension == 256
        assert result.model == "text-embedding-3-small"
        assert result.provider_calls == 4
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(
        self, embedder: MultiScaleEmbedder, embedding_provider, make_chunk
    ) -> None:
        chunk = make_chunk()
        first = await embedder.embed_chunks([chunk])
        second = await embedder.embed_chunks([chunk])

        assert embedding_provider.calls == 1
        assert second.cached == 1
        assert second.generated == 0
        assert second.provider_calls == 0
        assert second.embeddings[0].vector == first.embeddings[0].vector

    @pytest.mark.asyncio
    async def test_cache_disabled_always_calls_provider(self, embedding_provider, make_chunk) -> None:
        embedder = MultiScaleEmbedder(
            embedding_provider, EmbeddingConfig(cache_enabled=False, **_FAST)
        )
        chunk = make_chunk()
        await embedder.embed_chunks([chunk])
        await embedder.embed_chunks([chunk])
        assert embedding_provider.calls == 2

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, provider_factory, make_chunk) -> None:
        provider = provider_factory(fail_times=2)
        embedder = MultiScaleEmbedder(provider, EmbeddingConfig(max_retries=3, **_FAST))

        result = await embedder.embed_chunks([make_chunk()])

        assert result.generated == 1
        assert result.failures == []
        assert provider.calls == 3
        assert embedder.provider_calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_recorded_per_chunk(self, provider_factory, make_chunk) -> None:
        provider = provider_factory(fail_when="POISON")
        embedder = MultiScaleEmbedder(provider, EmbeddingConfig(max_retries=2, **_FAST))
        good = make_chunk()
        bad = make_chunk("POISON in this chunk text.")

        result = await embedder.embed_chunks([good, bad])

        assert [e.chunk_id for e in result.embeddings] == [good.chunk_id]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.chunk_id == bad.chunk_id
        assert failure.attempts == 2
        assert "poisoned input" in failure.error
        assert result.failed_chunk_ids == {bad.chunk_id}

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self, make_chunk) -> None:
        config = EmbeddingConfig(max_retries=1, timeout_seconds=0.01, retry_backoff_seconds=0.0)
        embedder = MultiScaleEmbedder(_SlowProvider(), config)

        result = await embedder.embed_chunks([make_chunk()])

        assert result.generated == 0
        assert "timed out" in result.failures[0].error

    @pytest.mark.asyncio
    async def test_non_finite_vector_rejected(self, make_chunk) -> None:
        config = EmbeddingConfig(max_retries=1, **_FAST)
        result = await MultiScaleEmbedder(_NaNProvider(), config).embed_chunks([make_chunk()])
        assert result.generated == 0
        assert "non-finite" in result.failures[0].error

    @pytest.mark.asyncio
    async def test_cancellation_stops_requests(self, embedder, embedding_provider, make_chunk) -> None:
        with pytest.raises(JobCancelledError):
            await embedder.embed_chunks([make_chunk(), make_chunk()], should_cancel=lambda: True)
        assert embedding_provider.calls == 0

    @pytest.mark.asyncio
    async def test_empty_input(self, embedder: MultiScaleEmbedder) -> None:
        result = await embedder.embed_chunks([])
        assert result.generated == 0
        assert result.dimension == 0


# ======================================================================
# Queries and domain boosts
# ======================================================================


class TestQueriesAndBoosts:
    @pytest.mark.asyncio
    async def test_embed_query_matches_content_vector(
        self, embedder: MultiScaleEmbedder, vectorize
    ) -> None:
        vector = await embedder.embed_query("how do I water tomatoes")
        assert vector == pytest.approx(vectorize("how do I water tomatoes"))

    @pytest.mark.asyncio
    async def test_embed_query_cached(self, embedder, embedding_provider) -> None:
        await embedder.embed_query("mulch depth")
        await embedder.embed_query("mulch depth")
        assert embedding_provider.calls == 1

    @pytest.mark.asyncio
    async def test_embed_query_raises_after_retries(self, provider_factory) -> None:
        provider = provider_factory(fail_times=10)
        embedder = MultiScaleEmbedder(provider, EmbeddingConfig(max_retries=2, **_FAST))
        with pytest.raises(ProviderError, match="transient failure"):
            await embedder.embed_query("anything")

    def test_text_boost_prefixes_domain_terms(self, embedding_provider, make_chunk) -> None:
        config = EmbeddingConfig(
            boost_mode="text", domain_keywords=("compost",), keyword_boost=1.2, **_FAST
        )
        chunk = make_chunk()
        text = MultiScaleEmbedder(embedding_provider, config).build_text(
            chunk, EmbeddingType.CONTENT
        )
        assert text == f"Domain Terms: compost, compost\n\n{chunk.content}"

    def test_text_boost_skips_unmatched(self, embedding_provider, make_chunk) -> None:
        config = EmbeddingConfig(boost_mode="text", domain_keywords=("rocket",), **_FAST)
        chunk = make_chunk()
        embedder = MultiScaleEmbedder(embedding_provider, config)
        assert embedder.build_text(chunk, EmbeddingType.CONTENT) == chunk.content

    @pytest.mark.asyncio
    async def test_vector_boost_scales_leading_dimensions(
        self, embedding_provider, make_chunk, vectorize
    ) -> None:
        config = EmbeddingConfig(
            boost_mode="vector", domain_keywords=("compost",), keyword_boost=3.0, **_FAST
        )
        chunk = make_chunk()
        result = await MultiScaleEmbedder(embedding_provider, config).embed_chunks([chunk])

        plain = vectorize(chunk.content)
        boosted = result.embeddings[0].vector
        assert boosted[:100] == pytest.approx([v * 1.5 for v in plain[:100]])
        assert boosted[100:] == pytest.approx(plain[100:])
