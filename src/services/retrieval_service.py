"""Caller-facing retrieval and answer assessment.

:class:`RetrievalService` wires the query analyzer, retrieval engine,
context assembler, confidence assessor and citation manager together:

    retrieve(query)        analyze -> retrieve -> assemble -> assess
    assess_answer(...)     citation validation -> full confidence assessment

``retrieve`` never raises for an empty or weak result.  Provider and store
failures during retrieval are logged and turned into an empty response
carrying a fallback and ``metadata["error"]``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import structlog

from src.config.pipeline_config import PipelineConfig
from src.interfaces.knowledge_store import IKnowledgeStore
from src.models.confidence import AnswerAssessment, GenerationMetadata
from src.models.retrieval import (
    AssembledContext,
    RetrievalQuery,
    RetrievalResponse,
    RetrievalResult,
)
from src.services.citation_manager import CitationManager
from src.services.confidence_assessor import ConfidenceAssessor
from src.services.context_assembler import ContextAssembler
from src.services.embedding.multi_scale_embedder import MultiScaleEmbedder
from src.services.retrieval.query_analyzer import QueryAnalyzer
from src.services.retrieval.retrieval_engine import RetrievalEngine
from src.utils.errors import PersistenceError, ProviderError
from src.utils.logging import get_logger


class RetrievalService:
    """Answers retrieval queries and scores generated answers.

    Parameters
    ----------
    store:
        Knowledge store to search.
    embedder:
        Embeds queries with the same model used at ingestion.
    config:
        Pipeline configuration; the retrieval, context, confidence and
        citation sections are used here.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        embedder: MultiScaleEmbedder,
        config: PipelineConfig | None = None,
    ) -> None:
        self._config = config or PipelineConfig()
        self._analyzer = QueryAnalyzer(self._config.confidence.domain_vocabulary)
        self._engine = RetrievalEngine(store, embedder, self._config.retrieval, self._analyzer)
        self._assembler = ContextAssembler(store, self._config.context)
        self._assessor = ConfidenceAssessor(self._config.confidence)
        self._citations = CitationManager(self._config.citation)
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def citations(self) -> CitationManager:
        return self._citations

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: RetrievalQuery,
        conversation_history: Sequence[str] = (),
    ) -> RetrievalResponse:
        analysis = self._analyzer.analyze(query.query)
        error: str | None = None
        try:
            result = await self._engine.retrieve(query, analysis)
            context = await self._assembler.assemble(result)
        except (ProviderError, PersistenceError) as exc:
            self._logger.error("retrieval_failed", query=query.query, error=str(exc))
            error = str(exc)
            result = RetrievalResult(
                query=query.query,
                strategy=query.strategy or self._config.retrieval.strategy,
                analysis=analysis,
            )
            context = AssembledContext()

        assessment = self._assessor.assess_retrieval(analysis, result.items, conversation_history)
        metadata = {
            "strategy": result.strategy.value,
            "total_results": len(result.items),
            "returned": len(context.items),
            "candidates_considered": result.candidates_considered,
            "elapsed_ms": round(result.elapsed_ms, 2),
            "context_tokens": context.total_tokens,
            "expanded": context.expanded,
            "redundant_removed": context.redundant_removed,
            "truncated": context.truncated,
            "confidence": round(assessment.aggregate, 4),
            "confidence_level": assessment.level.value,
        }
        if error is not None:
            metadata["error"] = error

        return RetrievalResponse(
            chunks=context.items,
            metadata=metadata,
            query_analysis=analysis,
            confidence=assessment,
            fallback=assessment.fallback,
        )

    def assess_answer(
        self,
        response: RetrievalResponse,
        answer: str,
        generation: GenerationMetadata | None = None,
        conversation_history: Sequence[str] = (),
        titles: Mapping[str, str] | None = None,
    ) -> AnswerAssessment:
        """Validate the answer's citations and run the full confidence assessment.

        Numbered and footnote markers in *answer* refer to ``response.chunks``
        in order.
        """
        sources = [item.chunk for item in response.chunks]
        report = self._citations.validate(answer, sources, titles)
        confidence = self._assessor.assess(
            response.query_analysis,
            response.chunks,
            answer,
            report.citations,
            generation,
            conversation_history,
        )
        self._logger.info(
            "answer_assessed",
            citations=report.total,
            valid_citations=len(report.valid),
            confidence=round(confidence.aggregate, 4),
            level=confidence.level.value,
        )
        return AnswerAssessment(citations=report, confidence=confidence)
