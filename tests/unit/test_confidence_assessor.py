"""Unit tests for ConfidenceAssessor -- components, aggregate and fallback rules."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from src.config.pipeline_config import ConfidenceConfig
from src.models.chunk import Chunk
from src.models.citation import Citation, CitationFormat
from src.models.confidence import FallbackStrategy, GenerationMetadata
from src.models.embedding import EmbeddingType
from src.models.retrieval import QueryAnalysis, RetrievalStrategy, RetrievedChunk
from src.services.confidence_assessor import ConfidenceAssessor
from src.services.retrieval.query_analyzer import QueryAnalyzer
from src.utils.confidence import ConfidenceLevel

_CLEAR_QUERY = "How do I turn a compost heap?"
_CONTENT = "Turn the compost heap weekly so air reaches the centre."
_ANSWER = "Turn the heap every week [1]. However, keep it damp [2] and covered [3]."


def _analysis(query: str = _CLEAR_QUERY) -> QueryAnalysis:
    return QueryAnalyzer().analyze(query)


@pytest.fixture()
def hits(make_chunk: Callable[..., Chunk]) -> Callable[..., list[RetrievedChunk]]:
    def _make(scores: list[float], quality: float = 0.9, sources: int = 3) -> list[RetrievedChunk]:
        return [
            RetrievedChunk(
                chunk=make_chunk(_CONTENT, source_id=f"src-{idx % sources}", quality_score=quality),
                score=score,
                embedding_type=EmbeddingType.CONTENT,
                strategy=RetrievalStrategy.VECTOR_ONLY,
            )
            for idx, score in enumerate(scores)
        ]

    return _make


def _citations(valid: int, invalid: int) -> list[Citation]:
    return [
        Citation(format=CitationFormat.NUMBERED, number=n, is_valid=n <= valid)
        for n in range(1, valid + invalid + 1)
    ]


# ======================================================================
# Components
# ======================================================================


class TestComponents:
    @pytest.fixture()
    def assessor(self) -> ConfidenceAssessor:
        return ConfidenceAssessor()

    def test_retrieval_component_factors(self, assessor, hits) -> None:
        component = assessor.retrieval_component(hits([0.9] * 5))
        assert component.factors == pytest.approx(
            {
                "top_similarity": 0.9,
                "average_similarity": 0.9,
                "chunk_count": 1.0,
                "source_quality": 0.9,
                "diversity": 1.0,
            }
        )
        assert component.score == pytest.approx(0.925)

    def test_retrieval_component_clamps_similarity(self, assessor, hits) -> None:
        component = assessor.retrieval_component(hits([1.1]))
        assert component.factors["top_similarity"] == 1.0

    def test_empty_retrieval_scores_zero(self, assessor) -> None:
        assert assessor.retrieval_component([]).score == 0.0

    def test_context_component(self, assessor, hits) -> None:
        component = assessor.context_component(_analysis(), hits([0.9]), ["earlier question"])
        assert component.factors == pytest.approx(
            {"clarity": 1.0, "complexity": 1.0, "domain_relevance": 1.0, "conversation": 0.8}
        )
        assert component.score == pytest.approx(0.96)

    @pytest.mark.parametrize(
        ("query", "expected"),
        [
            (_CLEAR_QUERY, 1.0),
            ("Compost ratio for Bokashi bins", 0.6),
            ("stuff", 0.4),
        ],
    )
    def test_clarity(self, query: str, expected: float) -> None:
        assert ConfidenceAssessor.clarity(_analysis(query)) == pytest.approx(expected)

    def test_domain_relevance_with_vocabulary(self) -> None:
        assessor = ConfidenceAssessor(ConfidenceConfig(domain_vocabulary=("Compost", "mulch")))
        assert assessor.domain_relevance(_analysis()) == pytest.approx(1 / 3)

    def test_domain_relevance_from_retrieved_content(self, assessor, hits) -> None:
        analysis = _analysis("turn compost rockets")
        assert assessor.domain_relevance(analysis, hits([0.9])) == pytest.approx(2 / 3)
        assert assessor.domain_relevance(_analysis("Is it?")) == 0.5

    def test_coherence(self, assessor) -> None:
        assert assessor.coherence("") == 0.0
        assert assessor.coherence(
            "Compost heaps need turning. However, they also need water."
        ) == pytest.approx(0.8)
        assert assessor.coherence("soil soil soil soil soil soil") == pytest.approx(0.6)

    def test_content_component(self, assessor) -> None:
        component = assessor.content_component(_ANSWER, _citations(valid=2, invalid=2))
        assert component.factors["citation_presence"] == 1.0
        assert component.factors["citation_accuracy"] == pytest.approx(0.5)
        assert component.factors["completeness"] == pytest.approx(len(_ANSWER) / 500)

    def test_generation_component(self, assessor) -> None:
        generation = GenerationMetadata(
            model_confidence=0.9, finish_reason="length", prompt_tokens=100, completion_tokens=50
        )
        component = assessor.generation_component("x" * 100, generation)
        assert component.factors == pytest.approx(
            {
                "model_confidence": 0.9,
                "response_length": 1.0,
                "finish_reason": 0.7,
                "token_utilization": 1.0,
            }
        )
        assert component.score == pytest.approx(0.9)

    def test_generation_estimates_confidence_from_temperature(self, assessor) -> None:
        component = assessor.generation_component("short", GenerationMetadata(temperature=0.0))
        assert component.factors["model_confidence"] == pytest.approx(0.8)
        assert component.factors["response_length"] == 0.7
        assert component.factors["token_utilization"] == 0.5


# ======================================================================
# Aggregate and fallbacks
# ======================================================================


class TestAssessment:
    def test_strong_retrieval_needs_no_fallback(self, hits) -> None:
        assessment = ConfidenceAssessor().assess_retrieval(_analysis(), hits([0.9] * 5))

        assert assessment.content is None
        assert assessment.generation is None
        # Re-weighted over retrieval (0.35) and context (0.2).
        assert assessment.aggregate == pytest.approx((0.925 * 0.35 + 0.9 * 0.2) / 0.55)
        assert assessment.level == ConfidenceLevel.HIGH
        assert assessment.issues == []
        assert assessment.fallback is None
        assert assessment.needs_fallback is False

    def test_aggregate_monotone_in_similarity(self, hits) -> None:
        assessor = ConfidenceAssessor()
        aggregates = [
            assessor.assess_retrieval(_analysis(), hits([s] * 3)).aggregate
            for s in (0.1, 0.3, 0.5, 0.7, 0.9, 1.0, 1.2)
        ]
        assert aggregates == sorted(aggregates)

    def test_no_results_always_falls_back(self) -> None:
        assessment = ConfidenceAssessor(ConfidenceConfig(fallback_threshold=0.0)).assess_retrieval(
            _analysis(), []
        )
        assert assessment.fallback is not None
        assert assessment.fallback.strategy == FallbackStrategy.NO_RELEVANT_SOURCES
        assert assessment.fallback.confidence <= 0.2
        assert _CLEAR_QUERY in assessment.fallback.message
        assert assessment.fallback.suggestions
        assert FallbackStrategy.NO_RELEVANT_SOURCES in assessment.issues
        assert FallbackStrategy.LOW_RETRIEVAL_CONFIDENCE in assessment.issues

    def test_low_retrieval(self, hits) -> None:
        assessment = ConfidenceAssessor().assess_retrieval(
            _analysis(), hits([0.3], quality=0.5, sources=1)
        )
        assert assessment.retrieval.score < 0.6
        assert assessment.aggregate < 0.6
        assert assessment.fallback.strategy == FallbackStrategy.LOW_RETRIEVAL_CONFIDENCE
        assert assessment.fallback.confidence == pytest.approx(0.3)

    def test_poor_citations(self, hits) -> None:
        assessor = ConfidenceAssessor(ConfidenceConfig(fallback_threshold=0.95))
        assessment = assessor.assess(
            _analysis(), hits([0.9] * 5), _ANSWER, citations=_citations(valid=0, invalid=3)
        )

        fallback = assessment.fallback
        assert fallback.strategy == FallbackStrategy.POOR_CITATION_QUALITY
        assert fallback.confidence == pytest.approx(max(assessment.aggregate - 0.2, 0.1))
        assert fallback.message.startswith(_ANSWER)
        assert "citations" in fallback.message
        assert FallbackStrategy.POOR_CITATION_QUALITY in assessment.issues

    def test_ambiguous_query(self, hits) -> None:
        assessor = ConfidenceAssessor(ConfidenceConfig(fallback_threshold=0.95))
        assessment = assessor.assess_retrieval(_analysis("stuff"), hits([0.9] * 5))

        assert assessment.fallback.strategy == FallbackStrategy.QUERY_AMBIGUITY
        assert assessment.fallback.confidence == pytest.approx(0.4)
        assert assessment.issues == [FallbackStrategy.QUERY_AMBIGUITY]

    def test_default_rule_is_low_retrieval(self, hits) -> None:
        assessor = ConfidenceAssessor(ConfidenceConfig(fallback_threshold=0.99))
        assessment = assessor.assess_retrieval(_analysis(), hits([0.9] * 5))

        assert assessment.issues == []
        assert assessment.fallback.strategy == FallbackStrategy.LOW_RETRIEVAL_CONFIDENCE
        assert assessment.fallback.confidence == pytest.approx(0.3)

    def test_full_assessment_uses_all_components(self, hits) -> None:
        assessment = ConfidenceAssessor().assess(
            _analysis(),
            hits([0.9] * 5),
            _ANSWER,
            citations=_citations(valid=3, invalid=0),
            generation=GenerationMetadata(model_confidence=0.9),
        )
        expected = (
            0.35 * assessment.retrieval.score
            + 0.25 * assessment.content.score
            + 0.2 * assessment.context.score
            + 0.2 * assessment.generation.score
        )
        assert assessment.aggregate == pytest.approx(expected)
        assert assessment.fallback is None
