"""Retrieval query/result models.

A :class:`RetrievalQuery` names a strategy and its bounds; the engine
answers with a :class:`RetrievalResult` whose items each record which
strategy and embedding type produced them -- the confidence assessor needs
that provenance later.  :class:`RetrievalResponse` is the caller-facing
envelope: it is always well formed, even when nothing was found, and then
carries a fallback instead of chunks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.chunk import Chunk, ChunkScale
from src.models.confidence import ConfidenceAssessment, FallbackResponse
from src.models.embedding import EmbeddingType, SimilarityMetric


class RetrievalStrategy(str, Enum):  # noqa: UP042
    VECTOR_ONLY = "vector_only"
    HYBRID = "hybrid"
    MULTI_SCALE = "multi_scale"
    CONTEXTUAL = "contextual"


class QueryType(str, Enum):  # noqa: UP042
    DEFINITION = "definition"
    PROCEDURE = "procedure"
    COMPARISON = "comparison"
    LIST = "list"
    EXAMPLE = "example"
    TROUBLESHOOTING = "troubleshooting"
    GENERAL = "general"


class QueryComplexity(str, Enum):  # noqa: UP042
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class RetrievalFilters(BaseModel):
    """Optional narrowing applied inside the store's similarity search."""

    model_config = ConfigDict(frozen=True)

    source_ids: list[str] | None = None
    min_quality: float | None = Field(default=None, ge=0.0, le=1.0)
    scales: list[ChunkScale] | None = None
    include_archived: bool = False

    def matches(self, chunk: Chunk) -> bool:
        if chunk.archived and not self.include_archived:
            return False
        if self.source_ids is not None and chunk.source_id not in self.source_ids:
            return False
        if self.min_quality is not None and chunk.quality_score < self.min_quality:
            return False
        return self.scales is None or chunk.scale in self.scales


class RetrievalQuery(BaseModel):
    """A caller's retrieval request.

    ``None`` bounds fall back to the pipeline's RetrievalConfig defaults.
    """

    model_config = ConfigDict(frozen=True)

    query: str
    strategy: RetrievalStrategy | None = None
    max_results: int | None = Field(default=None, ge=1)
    similarity_threshold: float | None = None
    metric: SimilarityMetric | None = None
    embedding_type: EmbeddingType | None = None
    filters: RetrievalFilters = Field(default_factory=RetrievalFilters)


class QueryAnalysis(BaseModel):
    """Intent features derived from the query text alone."""

    model_config = ConfigDict(frozen=True)

    original: str
    normalized: str
    query_type: QueryType = QueryType.GENERAL
    intents: list[QueryType] = Field(default_factory=list)
    complexity: QueryComplexity = QueryComplexity.SIMPLE
    word_count: int = 0
    key_terms: list[str] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    question_words: list[str] = Field(default_factory=list)
    has_intent: bool = False


class RetrievedChunk(BaseModel):
    """One retrieval hit with its provenance."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float = Field(description="Similarity after strategy-specific combination.")
    embedding_type: EmbeddingType
    strategy: RetrievalStrategy
    vector_score: float | None = None
    lexical_score: float | None = None
    expanded_from: str | None = Field(
        default=None,
        description="Chunk id of the hit this chunk was pulled in for by context expansion.",
    )


class RetrievalResult(BaseModel):
    """Ordered hits for one query plus how they were obtained."""

    model_config = ConfigDict(frozen=True)

    query: str
    strategy: RetrievalStrategy
    items: list[RetrievedChunk] = Field(default_factory=list)
    analysis: QueryAnalysis | None = None
    candidates_considered: int = 0
    elapsed_ms: float = 0.0

    @property
    def scores(self) -> list[float]:
        return [i.score for i in self.items]

    def source_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for item in self.items:
            seen.setdefault(item.chunk.source_id, None)
        return list(seen)


class RetrievalResponse(BaseModel):
    """Caller-facing retrieval envelope: ``{chunks, metadata, query_analysis}``."""

    model_config = ConfigDict(frozen=True)

    chunks: list[RetrievedChunk] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    query_analysis: QueryAnalysis
    confidence: ConfidenceAssessment | None = None
    fallback: FallbackResponse | None = None


class AssembledContext(BaseModel):
    """Retrieved chunks after expansion, de-duplication, budget and reordering."""

    model_config = ConfigDict(frozen=True)

    items: list[RetrievedChunk] = Field(default_factory=list)
    total_tokens: int = 0
    expanded: int = Field(default=0, description="Chunks pulled in as parent/child/sibling context.")
    redundant_removed: int = 0
    truncated: int = Field(default=0, description="Chunks left out by the token budget.")

    def render(self) -> str:
        """Numbered context block suitable for a prompt."""
        blocks = []
        for idx, item in enumerate(self.items, start=1):
            label = item.chunk.heading or item.chunk.source_id
            blocks.append(f"[{idx}] {item.chunk.source_id} | {label}\n{item.chunk.content}")
        return "\n\n".join(blocks)
