"""Vector retrieval engine with four strategies.

``vector_only``
    Embed the query, take the store's nearest neighbours for one embedding
    type and keep those at or above the similarity threshold.
``hybrid``
    Union of the vector candidates and the best BM25 matches over stored
    chunk content; combined score ``0.7 * vector + 0.3 * lexical``, with
    BM25 saturated to ``s / (s + k)`` so a lexical match alone never reaches
    the full lexical weight.
``multi_scale``
    ``vector_only`` per (embedding type, scale) pair with a per-scale quota
    of ``ceil(max_results / len(scales))``; a chunk found through several
    embedding types keeps its best score (``max``) or the scale-weighted
    mean (``weighted``).
``contextual``
    ``vector_only`` over chunks at or above a quality floor, re-ranked with
    a boost for chunks that read like an answer to the query's intent
    (definitions for "what is", steps for "how to", enumerations for
    "list").

Every result records the strategy and embedding type that produced it.
"""

from __future__ import annotations

import math
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from src.config.pipeline_config import RetrievalConfig
from src.interfaces.knowledge_store import IKnowledgeStore
from src.models.chunk import Chunk, ChunkScale
from src.models.embedding import EmbeddingType, SimilarityMetric
from src.models.retrieval import (
    QueryAnalysis,
    QueryType,
    RetrievalFilters,
    RetrievalQuery,
    RetrievalResult,
    RetrievalStrategy,
    RetrievedChunk,
)
from src.services.embedding.multi_scale_embedder import MultiScaleEmbedder
from src.services.retrieval.lexical import LexicalIndex
from src.services.retrieval.query_analyzer import QueryAnalyzer

logger = structlog.get_logger(logger_name=__name__)

# Content cues that a chunk answers a query of the given type.
INTENT_CUES: dict[QueryType, re.Pattern[str]] = {
    QueryType.DEFINITION: re.compile(r"\b(?:is|are|means|defined|refers to)\b", re.I),
    QueryType.PROCEDURE: re.compile(
        r"\b(?:step|steps|first|then|next|finally|how)\b|^\s*\d+[.)]\s", re.I | re.M
    ),
    QueryType.LIST: re.compile(r"^\s*(?:[-*•]|\d+[.)])\s|\w+, \w+,? and \w+", re.M),
    QueryType.COMPARISON: re.compile(r"\b(?:whereas|unlike|compared|differs?|however|while)\b", re.I),
    QueryType.EXAMPLE: re.compile(r"\b(?:for example|for instance|such as|e\.g\.)", re.I),
    QueryType.TROUBLESHOOTING: re.compile(r"\b(?:error|fix|resolve|issue|problem|cause)s?\b", re.I),
}


@dataclass(frozen=True)
class _Params:
    strategy: RetrievalStrategy
    max_results: int
    threshold: float
    metric: SimilarityMetric
    embedding_type: EmbeddingType
    filters: RetrievalFilters


class RetrievalEngine:
    """Runs retrieval strategies against an :class:`IKnowledgeStore`.

    Parameters
    ----------
    store:
        Knowledge store holding chunks and embeddings.
    embedder:
        Embeds the query text (same model and boost as ingestion).
    config:
        Strategy defaults, weights and multi-scale settings.
    analyzer:
        Query analyzer; a default one when omitted.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        embedder: MultiScaleEmbedder,
        config: RetrievalConfig | None = None,
        analyzer: QueryAnalyzer | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or RetrievalConfig()
        self._analyzer = analyzer or QueryAnalyzer()
        self._lexical = LexicalIndex(self._config.lexical_saturation)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, query: str) -> QueryAnalysis:
        return self._analyzer.analyze(query)

    async def retrieve(
        self,
        query: RetrievalQuery,
        analysis: QueryAnalysis | None = None,
    ) -> RetrievalResult:
        """Run the query's strategy and return ranked, capped results."""
        started = time.perf_counter()
        params = self._resolve(query)
        analysis = analysis or self._analyzer.analyze(query.query)

        if not query.query.strip():
            items, considered = [], 0
        elif params.strategy == RetrievalStrategy.HYBRID:
            items, considered = await self._hybrid(query.query, params)
        elif params.strategy == RetrievalStrategy.MULTI_SCALE:
            items, considered = await self._multi_scale(query.query, params)
        elif params.strategy == RetrievalStrategy.CONTEXTUAL:
            items, considered = await self._contextual(query.query, params, analysis)
        else:
            items, considered = await self._vector_only(query.query, params)

        items = self._rank(items)[: params.max_results]
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "retrieval_complete",
            strategy=params.strategy.value,
            results=len(items),
            candidates=considered,
            threshold=params.threshold,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return RetrievalResult(
            query=query.query,
            strategy=params.strategy,
            items=items,
            analysis=analysis,
            candidates_considered=considered,
            elapsed_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _vector_only(
        self,
        text: str,
        params: _Params,
        embedding_type: EmbeddingType | None = None,
        filters: RetrievalFilters | None = None,
        k: int | None = None,
        strategy: RetrievalStrategy = RetrievalStrategy.VECTOR_ONLY,
    ) -> tuple[list[RetrievedChunk], int]:
        etype = embedding_type or params.embedding_type
        vector = await self._embedder.embed_query(text, etype)
        hits = await self._store.nearest(
            vector,
            params.metric,
            k or params.max_results,
            filters or params.filters,
            etype,
        )
        items = [
            RetrievedChunk(
                chunk=chunk,
                score=score,
                vector_score=score,
                embedding_type=etype,
                strategy=strategy,
            )
            for chunk, score in hits
            if score >= params.threshold
        ]
        return items, len(hits)

    async def _hybrid(self, text: str, params: _Params) -> tuple[list[RetrievedChunk], int]:
        cfg = self._config
        pool = params.max_results * cfg.candidate_multiplier
        vector = await self._embedder.embed_query(text, params.embedding_type)
        vector_hits = await self._store.nearest(
            vector, params.metric, pool, params.filters, params.embedding_type
        )

        corpus = [c async for c in self._store.iter_chunks(params.filters)]
        self._lexical.update(corpus)
        lexical = self._lexical.scores(text)
        lexical_top = sorted(lexical.items(), key=lambda kv: -kv[1])[:pool]

        by_id: dict[str, Chunk] = {c.chunk_id: c for c, _ in vector_hits}
        vector_scores = {c.chunk_id: s for c, s in vector_hits}
        if lexical_top:
            corpus_by_id = {c.chunk_id: c for c in corpus}
            for cid, _ in lexical_top:
                by_id.setdefault(cid, corpus_by_id[cid])

        total = cfg.vector_weight + cfg.lexical_weight or 1.0
        items: list[RetrievedChunk] = []
        for cid, chunk in by_id.items():
            v = vector_scores.get(cid, 0.0)
            lex = lexical.get(cid, 0.0)
            combined = (cfg.vector_weight * v + cfg.lexical_weight * lex) / total
            if combined < params.threshold:
                continue
            items.append(
                RetrievedChunk(
                    chunk=chunk,
                    score=combined,
                    vector_score=v,
                    lexical_score=lex,
                    embedding_type=params.embedding_type,
                    strategy=RetrievalStrategy.HYBRID,
                )
            )
        return items, len(by_id)

    async def _multi_scale(self, text: str, params: _Params) -> tuple[list[RetrievedChunk], int]:
        cfg = self._config
        scales: Sequence[ChunkScale] = cfg.multi_scale_scales
        if params.filters.scales is not None:
            scales = [s for s in scales if s in params.filters.scales]
        if not scales:
            return [], 0
        quota = math.ceil(params.max_results / len(scales))

        found: dict[str, list[RetrievedChunk]] = {}
        considered = 0
        for etype in cfg.multi_scale_types:
            for scale in scales:
                scoped = params.filters.model_copy(update={"scales": [scale]})
                items, seen = await self._vector_only(
                    text,
                    params,
                    embedding_type=etype,
                    filters=scoped,
                    k=quota,
                    strategy=RetrievalStrategy.MULTI_SCALE,
                )
                considered += seen
                for item in items:
                    found.setdefault(item.chunk.chunk_id, []).append(item)

        merged: list[RetrievedChunk] = []
        for entries in found.values():
            best = max(entries, key=lambda i: i.score)
            if cfg.multi_scale_merge == "weighted":
                weight = cfg.scale_weights.get(best.chunk.scale, 1.0)
                score = weight * sum(e.score for e in entries) / len(entries)
                best = best.model_copy(update={"score": score})
            merged.append(best)
        return merged, considered

    async def _contextual(
        self,
        text: str,
        params: _Params,
        analysis: QueryAnalysis,
    ) -> tuple[list[RetrievedChunk], int]:
        cfg = self._config
        floor = cfg.contextual_quality_floor
        if params.filters.min_quality is not None:
            floor = max(floor, params.filters.min_quality)
        scoped = params.filters.model_copy(update={"min_quality": floor})
        items, considered = await self._vector_only(
            text,
            params,
            filters=scoped,
            k=params.max_results * cfg.candidate_multiplier,
            strategy=RetrievalStrategy.CONTEXTUAL,
        )

        cues = [INTENT_CUES[t] for t in analysis.intents if t in INTENT_CUES]
        boosted: list[RetrievedChunk] = []
        for item in items:
            target = f"{item.chunk.heading}\n{item.chunk.content}"
            if cues and any(p.search(target) for p in cues):
                item = item.model_copy(update={"score": item.score + cfg.intent_boost})
            boosted.append(item)
        return boosted, considered

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, query: RetrievalQuery) -> _Params:
        cfg = self._config
        return _Params(
            strategy=query.strategy or cfg.strategy,
            max_results=query.max_results or cfg.max_results,
            threshold=(
                query.similarity_threshold
                if query.similarity_threshold is not None
                else cfg.similarity_threshold
            ),
            metric=query.metric or cfg.metric,
            embedding_type=query.embedding_type or cfg.embedding_type,
            filters=query.filters,
        )

    @staticmethod
    def _rank(items: list[RetrievedChunk]) -> list[RetrievedChunk]:
        return sorted(
            items,
            key=lambda i: (-i.score, i.chunk.source_id, i.chunk.position, i.chunk.chunk_id),
        )
