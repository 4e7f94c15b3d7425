"""Immutable pipeline configuration.

One :class:`PipelineConfig` is built per pipeline run (usually from
``config/config.yaml`` via :func:`src.config.loader.build_pipeline_config`)
and handed explicitly to every component.  No component reads shared
mutable switches; to change behaviour, build a new config with
``model_copy(update=...)``.

All default values here are the documented weights and thresholds of the
chunking, embedding, retrieval, context and confidence algorithms.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.chunk import ChunkScale
from src.models.embedding import EmbeddingType, SimilarityMetric
from src.models.retrieval import RetrievalStrategy


class ScaleBand(BaseModel):
    """Inclusive token-count band for one chunk scale."""

    model_config = ConfigDict(frozen=True)

    min_tokens: int = Field(ge=0)
    max_tokens: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> ScaleBand:
        if self.min_tokens > self.max_tokens:
            raise ValueError(f"min_tokens {self.min_tokens} exceeds max_tokens {self.max_tokens}")
        return self

    def contains(self, tokens: int) -> bool:
        return self.min_tokens <= tokens <= self.max_tokens


class ChunkingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    document: ScaleBand = ScaleBand(min_tokens=1, max_tokens=8000)
    section: ScaleBand = ScaleBand(min_tokens=100, max_tokens=2000)
    paragraph: ScaleBand = ScaleBand(min_tokens=100, max_tokens=500)
    sentence: ScaleBand = ScaleBand(min_tokens=20, max_tokens=150)
    enable_sentence_scale: bool = True
    # Boundary refinement (always on for advanced-processing jobs).
    refine_boundaries: bool = False
    boundary_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    min_chunk_chars: int = Field(default=50, ge=0)
    # Quality validation.
    min_quality: float = Field(default=0.4, ge=0.0, le=1.0)
    ideal_min_tokens: int = 50
    ideal_max_tokens: int = 500
    # Parent linking.
    parent_score_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    proximity_window: int = Field(default=10, ge=1)

    def band(self, scale: ChunkScale) -> ScaleBand:
        return getattr(self, scale.value)


class EmbeddingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str = "text-embedding-3-small"
    embedding_types: tuple[EmbeddingType, ...] = (EmbeddingType.CONTENT,)
    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(default=3600, ge=1)
    cache_max_size: int = Field(default=10000, ge=1)
    max_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0)
    timeout_seconds: float | None = Field(default=30.0, gt=0.0)
    concurrency: int = Field(default=4, ge=1)
    # Domain keyword boost: "text" frames the input, "vector" scales the output.
    boost_mode: Literal["none", "text", "vector"] = "none"
    domain_keywords: tuple[str, ...] = ()
    keyword_boost: float = Field(default=1.2, ge=1.0)
    semantic_keyword_count: int = Field(default=5, ge=1)


class RetrievalConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: RetrievalStrategy = RetrievalStrategy.HYBRID
    max_results: int = Field(default=10, ge=1)
    similarity_threshold: float = 0.3
    metric: SimilarityMetric = SimilarityMetric.COSINE
    embedding_type: EmbeddingType = EmbeddingType.CONTENT
    candidate_multiplier: int = Field(default=3, ge=1)
    # hybrid
    vector_weight: float = Field(default=0.7, ge=0.0)
    lexical_weight: float = Field(default=0.3, ge=0.0)
    # BM25 score s maps to s / (s + lexical_saturation)
    lexical_saturation: float = Field(default=2.0, gt=0.0)
    # multi_scale
    multi_scale_scales: tuple[ChunkScale, ...] = (
        ChunkScale.DOCUMENT,
        ChunkScale.SECTION,
        ChunkScale.PARAGRAPH,
    )
    multi_scale_types: tuple[EmbeddingType, ...] = (EmbeddingType.CONTENT,)
    multi_scale_merge: Literal["max", "weighted"] = "max"
    scale_weights: dict[ChunkScale, float] = Field(
        default_factory=lambda: {
            ChunkScale.DOCUMENT: 0.6,
            ChunkScale.SECTION: 0.8,
            ChunkScale.PARAGRAPH: 1.0,
            ChunkScale.SENTENCE: 0.9,
        }
    )
    # contextual
    contextual_quality_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    intent_boost: float = Field(default=0.1, ge=0.0)


class ContextConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enable_expansion: bool = True
    max_expansion: int = Field(default=3, ge=0)
    expand_top_n: int = Field(default=3, ge=0)
    parent_decay: float = 0.8
    child_decay: float = 0.9
    redundancy_ceiling: float = Field(default=0.8, ge=0.0, le=1.0)
    lost_in_middle: bool = True
    interleave_sources: bool = False
    high_relevance: float = 0.8
    medium_relevance: float = 0.6
    max_context_tokens: int = Field(default=6000, ge=1)


class ConfidenceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    weights: dict[str, float] = Field(
        default_factory=lambda: {
            "retrieval": 0.35,
            "content": 0.25,
            "context": 0.2,
            "generation": 0.2,
        }
    )
    fallback_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    high: float = 0.8
    medium: float = 0.6
    domain_vocabulary: tuple[str, ...] = ()


class CitationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    fuzzy_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    claim_window: int = Field(default=200, ge=0)


class IngestionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_concurrency: int = Field(default=1, ge=1)
    stop_on_error: bool = False
    max_document_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    allowed_extensions: tuple[str, ...] = (".txt", ".md", ".text")


class PipelineConfig(BaseModel):
    """Everything a pipeline run needs to know, frozen."""

    model_config = ConfigDict(frozen=True)

    chunking: ChunkingConfig = ChunkingConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    retrieval: RetrievalConfig = RetrievalConfig()
    context: ContextConfig = ContextConfig()
    confidence: ConfidenceConfig = ConfidenceConfig()
    citation: CitationConfig = CitationConfig()
    ingestion: IngestionConfig = IngestionConfig()

    def with_refinement(self) -> PipelineConfig:
        """Copy with boundary refinement switched on (advanced processing)."""
        return self.model_copy(
            update={"chunking": self.chunking.model_copy(update={"refine_boundaries": True})}
        )
