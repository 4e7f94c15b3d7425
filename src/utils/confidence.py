"""Confidence scoring utilities.

Two building blocks used by the confidence assessor and the chunk quality
validator:

1. **calculate_confidence** -- weighted average of several score signals,
   clamped to [0.0, 1.0].
2. **confidence_to_level** -- maps an aggregate score to the discrete
   low/medium/high level reported to callers.
"""

from enum import Enum


class ConfidenceLevel(str, Enum):  # noqa: UP042
    """Discrete confidence levels reported on a ConfidenceAssessment."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def calculate_confidence(
    scores: list[float],
    weights: list[float] | None = None,
) -> float:
    """Compute a weighted average confidence score.

    Args:
        scores: Individual scores, each expected in [0.0, 1.0].
        weights: Optional weights for each score. Defaults to equal weighting.

    Returns:
        Weighted average clamped to [0.0, 1.0].

    Raises:
        ValueError: If scores is empty or lengths of scores and weights differ.
    """
    if not scores:
        raise ValueError("scores must not be empty")

    if weights is None:
        weights = [1.0] * len(scores)

    if len(scores) != len(weights):
        raise ValueError("scores and weights must have the same length")

    total_weight = sum(weights)
    if total_weight == 0:
        return 0.0

    weighted_sum = sum(s * w for s, w in zip(scores, weights, strict=True))
    return max(0.0, min(1.0, weighted_sum / total_weight))


def weighted_factors(factors: dict[str, float], weights: dict[str, float]) -> float:
    """Weighted average over named factors; missing factors score 0."""
    names = list(weights)
    return calculate_confidence(
        [max(0.0, min(1.0, factors.get(n, 0.0))) for n in names],
        [weights[n] for n in names],
    )


def confidence_to_level(score: float, high: float = 0.8, medium: float = 0.6) -> ConfidenceLevel:
    """Map a numeric score to a ConfidenceLevel.

    Anything below *medium* is LOW -- there is no separate "very low" level;
    whether a fallback is needed is decided by the assessor's threshold.
    """
    if score >= high:
        return ConfidenceLevel.HIGH
    if score >= medium:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW
