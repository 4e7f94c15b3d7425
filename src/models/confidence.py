"""Confidence assessment models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.models.citation import CitationReport
from src.utils.confidence import ConfidenceLevel


class FallbackStrategy(str, Enum):  # noqa: UP042
    """Named fallbacks chosen by the assessor's rule table."""

    LOW_RETRIEVAL_CONFIDENCE = "low_retrieval_confidence"
    NO_RELEVANT_SOURCES = "no_relevant_sources"
    POOR_CITATION_QUALITY = "poor_citation_quality"
    QUERY_AMBIGUITY = "query_ambiguity"


class ComponentScore(BaseModel):
    """One of the four components with the factors that produced it."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    factors: dict[str, float] = Field(default_factory=dict)


class FallbackResponse(BaseModel):
    """What a caller should show instead of (or alongside) a weak answer."""

    model_config = ConfigDict(frozen=True)

    strategy: FallbackStrategy
    message: str
    confidence: float = Field(ge=0.0, le=1.0, description="Capped confidence to report.")
    suggestions: list[str] = Field(default_factory=list)


class ConfidenceAssessment(BaseModel):
    """Per-component scores, aggregate, level and detected issues."""

    model_config = ConfigDict(frozen=True)

    retrieval: ComponentScore
    context: ComponentScore
    # None when only retrieval has happened (no answer generated yet).
    content: ComponentScore | None = None
    generation: ComponentScore | None = None
    aggregate: float = Field(ge=0.0, le=1.0)
    level: ConfidenceLevel
    issues: list[FallbackStrategy] = Field(default_factory=list)
    fallback: FallbackResponse | None = None

    @property
    def needs_fallback(self) -> bool:
        return self.fallback is not None


class GenerationMetadata(BaseModel):
    """What the caller knows about how an answer was generated."""

    model_config = ConfigDict(frozen=True)

    model: str = ""
    temperature: float = Field(default=0.3, ge=0.0)
    finish_reason: str = "stop"
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    model_confidence: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Explicit model-reported confidence; estimated from temperature when absent.",
    )


class AnswerAssessment(BaseModel):
    """Citation validation plus full confidence assessment of one answer."""

    model_config = ConfigDict(frozen=True)

    citations: CitationReport
    confidence: ConfidenceAssessment

    @property
    def fallback(self) -> FallbackResponse | None:
        return self.confidence.fallback
