"""Vector similarity helpers (numpy).

All three metrics return "higher is more similar" so callers can apply one
threshold regardless of metric:

    cosine       -- in [-1, 1]; zero vectors score 0.0
    euclidean    -- ``1 / (1 + distance)`` in (0, 1]
    dot_product  -- raw inner product
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from src.models.embedding import SimilarityMetric


def as_array(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def is_valid_vector(vector: Sequence[float] | None) -> bool:
    """Non-empty, one-dimensional and every component finite."""
    if vector is None or len(vector) == 0:
        return False
    arr = as_array(vector)
    return arr.ndim == 1 and bool(np.all(np.isfinite(arr)))


def similarity(a: Sequence[float], b: Sequence[float], metric: SimilarityMetric) -> float:
    """Similarity between two vectors of equal dimension under *metric*."""
    va, vb = as_array(a), as_array(b)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")
    if metric == SimilarityMetric.COSINE:
        denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
        return float(va @ vb) / denom if denom else 0.0
    if metric == SimilarityMetric.EUCLIDEAN:
        return 1.0 / (1.0 + float(np.linalg.norm(va - vb)))
    return float(va @ vb)


def similarity_matrix(
    query: Sequence[float],
    matrix: np.ndarray,
    metric: SimilarityMetric,
) -> np.ndarray:
    """Similarity of *query* against every row of *matrix* (vectorised)."""
    q = as_array(query)
    if matrix.size == 0:
        return np.zeros(0)
    if metric == SimilarityMetric.COSINE:
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        dots = matrix @ q
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, dots / norms, 0.0)
        return scores
    if metric == SimilarityMetric.EUCLIDEAN:
        return 1.0 / (1.0 + np.linalg.norm(matrix - q, axis=1))
    return matrix @ q
