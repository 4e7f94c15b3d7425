"""docuweave domain models -- re-exports all public model classes.

The models are organized by pipeline concern:
    - document.py   -- Document, its metadata, submissions, StructureNode
    - chunk.py      -- Chunk, ChunkScale, the ChunkTable arena, chunking stats
    - embedding.py  -- Embedding, EmbeddingType, SimilarityMetric
    - retrieval.py  -- queries, hits, results, the caller-facing response
    - confidence.py -- ConfidenceAssessment and fallback responses
    - citation.py   -- Citation, formats, bibliography
    - ingestion.py  -- IngestionJob state machine, summaries, statistics
"""

from __future__ import annotations

from src.models.chunk import Chunk, ChunkingStats, ChunkScale, ChunkTable
from src.models.citation import (
    BibliographyEntry,
    Citation,
    CitationConsistency,
    CitationFormat,
    CitationReport,
    CitationStatistics,
)
from src.models.confidence import (
    AnswerAssessment,
    ComponentScore,
    ConfidenceAssessment,
    FallbackResponse,
    FallbackStrategy,
    GenerationMetadata,
)
from src.models.document import Document, DocumentMetadata, DocumentSubmission, StructureNode
from src.models.embedding import (
    Embedding,
    EmbeddingBatchResult,
    EmbeddingFailure,
    EmbeddingType,
    SimilarityMetric,
)
from src.models.ingestion import (
    BatchIngestionSummary,
    CorpusStats,
    IngestionJob,
    IngestionStep,
    IngestionSummary,
    JobStatus,
    JobType,
    SourceStatistics,
)
from src.models.retrieval import (
    AssembledContext,
    QueryAnalysis,
    QueryComplexity,
    QueryType,
    RetrievalFilters,
    RetrievalQuery,
    RetrievalResponse,
    RetrievalResult,
    RetrievalStrategy,
    RetrievedChunk,
)

__all__ = [
    "AnswerAssessment",
    "AssembledContext",
    "BatchIngestionSummary",
    "BibliographyEntry",
    "Chunk",
    "ChunkScale",
    "ChunkTable",
    "ChunkingStats",
    "Citation",
    "CitationConsistency",
    "CitationFormat",
    "CitationReport",
    "CitationStatistics",
    "ComponentScore",
    "ConfidenceAssessment",
    "CorpusStats",
    "Document",
    "DocumentMetadata",
    "DocumentSubmission",
    "Embedding",
    "EmbeddingBatchResult",
    "EmbeddingFailure",
    "EmbeddingType",
    "FallbackResponse",
    "FallbackStrategy",
    "GenerationMetadata",
    "IngestionJob",
    "IngestionStep",
    "IngestionSummary",
    "JobStatus",
    "JobType",
    "QueryAnalysis",
    "QueryComplexity",
    "QueryType",
    "RetrievalFilters",
    "RetrievalQuery",
    "RetrievalResponse",
    "RetrievalResult",
    "RetrievalStrategy",
    "RetrievedChunk",
    "SimilarityMetric",
    "SourceStatistics",
    "StructureNode",
]
