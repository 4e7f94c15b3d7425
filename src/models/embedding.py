"""Embedding models.

Each chunk can carry several embeddings, one per :class:`EmbeddingType`,
keyed by ``(chunk_id, embedding_type)``.  Embeddings are immutable: a
content change produces a new chunk id and therefore a new embedding, never
an in-place update.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingType(str, Enum):  # noqa: UP042
    """Which text representation of a chunk was embedded.

    CONTENT       -- the raw chunk text
    CONTEXTUAL    -- text prefixed with its ancestor headings
    HIERARCHICAL  -- text framed with document structure and scale
    SEMANTIC      -- text framed with key concepts and structural annotations
    """

    CONTENT = "content"
    CONTEXTUAL = "contextual"
    HIERARCHICAL = "hierarchical"
    SEMANTIC = "semantic"


class SimilarityMetric(str, Enum):  # noqa: UP042
    COSINE = "cosine"
    EUCLIDEAN = "euclidean"
    DOT_PRODUCT = "dot_product"


class Embedding(BaseModel):
    """One vector for one chunk and one embedding type."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    embedding_type: EmbeddingType
    model: str
    vector: list[float] = Field(min_length=1)

    @property
    def dimension(self) -> int:
        return len(self.vector)

    @property
    def key(self) -> tuple[str, EmbeddingType]:
        return (self.chunk_id, self.embedding_type)


class EmbeddingFailure(BaseModel):
    """A chunk/type pair the provider could not embed after all retries."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    embedding_type: EmbeddingType
    error: str
    attempts: int = 0


class EmbeddingBatchResult(BaseModel):
    """Output of embedding one document's chunks."""

    model_config = ConfigDict(frozen=True)

    embeddings: list[Embedding] = Field(default_factory=list)
    failures: list[EmbeddingFailure] = Field(default_factory=list)
    model: str = ""
    dimension: int = 0
    cached: int = 0
    provider_calls: int = 0

    @property
    def generated(self) -> int:
        """Embeddings produced by provider calls; cache hits are counted in ``cached``."""
        return len(self.embeddings) - self.cached

    @property
    def failed_chunk_ids(self) -> set[str]:
        return {f.chunk_id for f in self.failures}
