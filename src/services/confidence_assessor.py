"""Confidence assessment and fallback selection.

Four component scores, each a weighted average of named factors in
[0, 1], are combined into one aggregate:

    retrieval   0.35   top / average similarity, chunk count, source quality,
                       source diversity
    content     0.25   citation presence / accuracy, completeness, coherence
    context     0.20   query clarity, complexity, domain relevance,
                       conversation history
    generation  0.20   model confidence, response length, finish reason,
                       token utilisation

Before an answer exists (plain retrieval) only the retrieval and context
components are scored and the aggregate is re-weighted over those two.

Below the fallback threshold, and always when nothing was retrieved, a
named fallback is chosen from a fixed rule table, first match wins:

    no results                  -> no_relevant_sources       (cap 0.2)
    retrieval component < 0.6   -> low_retrieval_confidence  (cap 0.3)
    citation accuracy < 0.7     -> poor_citation_quality     (cap max(score - 0.2, 0.1))
    query clarity < 0.5         -> query_ambiguity           (cap 0.4)
    otherwise                   -> low_retrieval_confidence  (cap 0.3)

Similarities are clamped to [0, 1] before scoring, so every retrieval
factor is non-decreasing in the hit scores and the aggregate never drops
when retrieval similarity rises.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import structlog

from src.config.pipeline_config import ConfidenceConfig
from src.models.citation import Citation
from src.models.confidence import (
    ComponentScore,
    ConfidenceAssessment,
    FallbackResponse,
    FallbackStrategy,
    GenerationMetadata,
)
from src.models.retrieval import QueryAnalysis, QueryComplexity, RetrievedChunk
from src.utils.confidence import confidence_to_level, weighted_factors

logger = structlog.get_logger(logger_name=__name__)

RETRIEVAL_FACTORS: dict[str, float] = {
    "top_similarity": 0.4,
    "average_similarity": 0.2,
    "chunk_count": 0.15,
    "source_quality": 0.15,
    "diversity": 0.1,
}
CONTENT_FACTORS: dict[str, float] = {
    "citation_presence": 0.3,
    "citation_accuracy": 0.3,
    "completeness": 0.2,
    "coherence": 0.2,
}
CONTEXT_FACTORS: dict[str, float] = {
    "clarity": 0.3,
    "complexity": 0.2,
    "domain_relevance": 0.3,
    "conversation": 0.2,
}
GENERATION_FACTORS: dict[str, float] = {
    "model_confidence": 0.4,
    "response_length": 0.2,
    "finish_reason": 0.2,
    "token_utilization": 0.2,
}

COMPLEXITY_SCORES: dict[QueryComplexity, float] = {
    QueryComplexity.SIMPLE: 1.0,
    QueryComplexity.MODERATE: 0.7,
    QueryComplexity.COMPLEX: 0.5,
}
FINISH_REASON_SCORES: dict[str, float] = {"stop": 1.0, "length": 0.7}

LOW_RETRIEVAL = 0.6
LOW_CITATION_ACCURACY = 0.7
LOW_CLARITY = 0.5

_TRANSITIONS = ("however", "therefore", "additionally", "furthermore", "moreover", "consequently")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


@dataclass(frozen=True)
class _Signals:
    """Inputs the fallback rules look at."""

    query: str
    result_count: int
    retrieval: float
    clarity: float
    citation_accuracy: float | None
    answer: str


class ConfidenceAssessor:
    """Scores retrieval results (and optionally a generated answer).

    Parameters
    ----------
    config:
        Component weights, level cut-offs, fallback threshold and the
        domain vocabulary used for domain relevance and coherence.
    """

    def __init__(self, config: ConfidenceConfig | None = None) -> None:
        self._config = config or ConfidenceConfig()
        self._vocabulary = tuple(t.lower() for t in self._config.domain_vocabulary)
        self._rules: list[tuple[Callable[[_Signals], bool], Callable[[_Signals, float], FallbackResponse]]] = [
            (lambda s: s.result_count == 0, self._no_relevant_sources),
            (lambda s: s.retrieval < LOW_RETRIEVAL, self._low_retrieval),
            (
                lambda s: s.citation_accuracy is not None and s.citation_accuracy < LOW_CITATION_ACCURACY,
                self._poor_citations,
            ),
            (lambda s: s.clarity < LOW_CLARITY, self._ambiguous_query),
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def assess_retrieval(
        self,
        analysis: QueryAnalysis,
        items: Sequence[RetrievedChunk],
        conversation_history: Sequence[str] = (),
    ) -> ConfidenceAssessment:
        """Assess retrieval alone, before any answer has been generated."""
        retrieval = self.retrieval_component(items)
        context = self.context_component(analysis, items, conversation_history)
        return self._finish(analysis, items, retrieval, context, None, None, answer="")

    def assess(
        self,
        analysis: QueryAnalysis,
        items: Sequence[RetrievedChunk],
        answer: str,
        citations: Sequence[Citation] = (),
        generation: GenerationMetadata | None = None,
        conversation_history: Sequence[str] = (),
    ) -> ConfidenceAssessment:
        """Full four-component assessment of a generated answer."""
        retrieval = self.retrieval_component(items)
        context = self.context_component(analysis, items, conversation_history)
        content = self.content_component(answer, citations)
        gen = self.generation_component(answer, generation or GenerationMetadata())
        return self._finish(analysis, items, retrieval, context, content, gen, answer=answer)

    def retrieval_component(self, items: Sequence[RetrievedChunk]) -> ComponentScore:
        sims = [_clamp(i.score) for i in items]
        factors = {
            "top_similarity": max(sims, default=0.0),
            "average_similarity": sum(sims) / len(sims) if sims else 0.0,
            "chunk_count": min(len(items) / 5, 1.0),
            "source_quality": (
                sum(i.chunk.quality_score for i in items) / len(items) if items else 0.0
            ),
            "diversity": min(len({i.chunk.source_id for i in items}) / 3, 1.0),
        }
        return ComponentScore(score=weighted_factors(factors, RETRIEVAL_FACTORS), factors=factors)

    def content_component(self, answer: str, citations: Sequence[Citation]) -> ComponentScore:
        total = len(citations)
        valid = sum(1 for c in citations if c.is_valid)
        factors = {
            "citation_presence": min(total / 3, 1.0),
            "citation_accuracy": valid / total if total else 0.0,
            "completeness": min(len(answer) / 500, 1.0),
            "coherence": self.coherence(answer),
        }
        return ComponentScore(score=weighted_factors(factors, CONTENT_FACTORS), factors=factors)

    def context_component(
        self,
        analysis: QueryAnalysis,
        items: Sequence[RetrievedChunk] = (),
        conversation_history: Sequence[str] = (),
    ) -> ComponentScore:
        factors = {
            "clarity": self.clarity(analysis),
            "complexity": COMPLEXITY_SCORES[analysis.complexity],
            "domain_relevance": self.domain_relevance(analysis, items),
            "conversation": 0.8 if conversation_history else 0.5,
        }
        return ComponentScore(score=weighted_factors(factors, CONTEXT_FACTORS), factors=factors)

    def generation_component(self, answer: str, generation: GenerationMetadata) -> ComponentScore:
        if generation.model_confidence is not None:
            model_confidence = generation.model_confidence
        else:
            model_confidence = min(0.7 + (1 - min(generation.temperature, 1.0)) * 0.1, 1.0)
        factors = {
            "model_confidence": model_confidence,
            "response_length": 1.0 if 50 < len(answer) < 2000 else 0.7,
            "finish_reason": FINISH_REASON_SCORES.get(generation.finish_reason, 0.5),
            "token_utilization": _token_utilization(
                generation.prompt_tokens, generation.completion_tokens
            ),
        }
        return ComponentScore(score=weighted_factors(factors, GENERATION_FACTORS), factors=factors)

    @staticmethod
    def clarity(analysis: QueryAnalysis) -> float:
        score = 0.5
        if analysis.question_words:
            score += 0.2
        if analysis.has_intent:
            score += 0.2
        if analysis.entities:
            score += 0.1
        if analysis.word_count < 3 or analysis.word_count > 30:
            score -= 0.1
        return _clamp(score)

    def domain_relevance(self, analysis: QueryAnalysis, items: Sequence[RetrievedChunk] = ()) -> float:
        """Share of the query's terms that belong to the domain.

        With a configured vocabulary: terms (entities and key terms)
        containing a vocabulary word, normalised to 3.  Without one: the
        fraction of key terms that occur in the retrieved content, or 0.5
        when the query has no key terms.
        """
        terms = [*analysis.entities, *analysis.key_terms]
        if self._vocabulary:
            relevant = [t for t in terms if any(v in t.lower() for v in self._vocabulary)]
            return min(len(relevant) / 3, 1.0)
        if not analysis.key_terms:
            return 0.5
        corpus = " ".join(i.chunk.content.lower() for i in items)
        found = sum(1 for t in analysis.key_terms if t in corpus)
        return found / len(analysis.key_terms)

    def coherence(self, text: str) -> float:
        if not text or len(text) < 10:
            return 0.0
        lowered = text.lower()
        score = 0.5
        if any(len(s.strip()) > 5 for s in _SENTENCE_SPLIT_RE.split(text)):
            score += 0.2
        if any(w in lowered for w in _TRANSITIONS):
            score += 0.1
        if self._vocabulary and sum(1 for v in self._vocabulary if v in lowered) > 1:
            score += 0.1
        tokens = lowered.split()
        if tokens and len(set(tokens)) / len(tokens) < 0.5:
            score -= 0.1
        return _clamp(score)

    def _select_fallback(self, signals: _Signals, aggregate: float) -> FallbackResponse:
        for matches, build in self._rules:
            if matches(signals):
                return build(signals, aggregate)
        return self._low_retrieval(signals, aggregate)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(
        self,
        analysis: QueryAnalysis,
        items: Sequence[RetrievedChunk],
        retrieval: ComponentScore,
        context: ComponentScore,
        content: ComponentScore | None,
        generation: ComponentScore | None,
        answer: str,
    ) -> ConfidenceAssessment:
        cfg = self._config
        components = {"retrieval": retrieval, "context": context}
        if content is not None:
            components["content"] = content
        if generation is not None:
            components["generation"] = generation
        weights = {name: cfg.weights.get(name, 0.0) for name in components}
        aggregate = weighted_factors({n: c.score for n, c in components.items()}, weights)

        citation_accuracy = content.factors["citation_accuracy"] if content is not None else None
        signals = _Signals(
            query=analysis.original,
            result_count=len(items),
            retrieval=retrieval.score,
            clarity=context.factors["clarity"],
            citation_accuracy=citation_accuracy,
            answer=answer,
        )

        issues: list[FallbackStrategy] = []
        if not items:
            issues.append(FallbackStrategy.NO_RELEVANT_SOURCES)
        if retrieval.score < LOW_RETRIEVAL:
            issues.append(FallbackStrategy.LOW_RETRIEVAL_CONFIDENCE)
        if citation_accuracy is not None and citation_accuracy < LOW_CITATION_ACCURACY:
            issues.append(FallbackStrategy.POOR_CITATION_QUALITY)
        if signals.clarity < LOW_CLARITY:
            issues.append(FallbackStrategy.QUERY_AMBIGUITY)

        fallback = None
        if aggregate < cfg.fallback_threshold or not items:
            fallback = self._select_fallback(signals, aggregate)
            logger.info(
                "confidence_fallback",
                strategy=fallback.strategy.value,
                aggregate=round(aggregate, 3),
                issues=[i.value for i in issues],
            )

        return ConfidenceAssessment(
            retrieval=retrieval,
            context=context,
            content=content,
            generation=generation,
            aggregate=aggregate,
            level=confidence_to_level(aggregate, cfg.high, cfg.medium),
            issues=issues,
            fallback=fallback,
        )

    # -- Fallback builders ------------------------------------------------

    @staticmethod
    def _no_relevant_sources(signals: _Signals, aggregate: float) -> FallbackResponse:
        return FallbackResponse(
            strategy=FallbackStrategy.NO_RELEVANT_SOURCES,
            message=(
                f'I couldn\'t find information about "{signals.query}" in the knowledge base. '
                "The topic may not be covered, or the documents may use different terminology."
            ),
            confidence=min(aggregate, 0.2),
            suggestions=[
                "Rephrase the question using terms from the source documents",
                "Ask about a narrower or related topic",
                "Check that the relevant documents have been ingested",
            ],
        )

    @staticmethod
    def _low_retrieval(signals: _Signals, aggregate: float) -> FallbackResponse:
        return FallbackResponse(
            strategy=FallbackStrategy.LOW_RETRIEVAL_CONFIDENCE,
            message=(
                f'I found limited relevant information for "{signals.query}". '
                "The available sources may not fully address the question."
            ),
            confidence=min(aggregate, 0.3),
            suggestions=[
                "Use more specific terminology",
                "Break a complex question into simpler parts",
                "Provide additional context about what you are looking for",
            ],
        )

    @staticmethod
    def _poor_citations(signals: _Signals, aggregate: float) -> FallbackResponse:
        note = (
            "Note: some citations in this response may not be accurate. "
            "Verify important information against the original documents."
        )
        message = f"{signals.answer}\n\n{note}" if signals.answer else note
        return FallbackResponse(
            strategy=FallbackStrategy.POOR_CITATION_QUALITY,
            message=message,
            confidence=max(aggregate - 0.2, 0.1),
            suggestions=["Ask for the specific source of each claim"],
        )

    @staticmethod
    def _ambiguous_query(signals: _Signals, aggregate: float) -> FallbackResponse:
        return FallbackResponse(
            strategy=FallbackStrategy.QUERY_AMBIGUITY,
            message=(
                f'The question "{signals.query}" could be interpreted in several ways. '
                "Could you clarify what you are asking about?"
            ),
            confidence=min(aggregate, 0.4),
            suggestions=[
                "Name the specific process, feature or document you mean",
                "Say whether you want step-by-step instructions or a general overview",
            ],
        )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _token_utilization(prompt_tokens: int, completion_tokens: int) -> float:
    if prompt_tokens + completion_tokens == 0:
        return 0.5
    if prompt_tokens == 0:
        return 0.6
    ratio = completion_tokens / prompt_tokens
    if 0.1 < ratio < 2:
        return 1.0
    if 0.05 < ratio < 3:
        return 0.8
    return 0.6
