"""Chunk quality scoring and hard filtering.

Every chunk gets a heuristic score (see
:func:`src.services.chunking.scoring.quality_score`).  Chunks below the
configured minimum are removed before persistence -- a hard filter, not a
warning.  Rejections are counted, not raised.
"""

from __future__ import annotations

import structlog

from src.models.chunk import Chunk
from src.services.chunking.scoring import quality_score

logger = structlog.get_logger(logger_name=__name__)


class ChunkQualityValidator:
    """Scores chunks and drops the ones below ``min_quality``."""

    def __init__(
        self,
        min_quality: float = 0.4,
        ideal_min_tokens: int = 50,
        ideal_max_tokens: int = 500,
    ) -> None:
        self._min_quality = min_quality
        self._ideal_min = ideal_min_tokens
        self._ideal_max = ideal_max_tokens

    def score(self, chunk: Chunk) -> Chunk:
        """Return a copy of *chunk* carrying its quality score."""
        value = quality_score(chunk, self._ideal_min, self._ideal_max)
        return chunk.model_copy(update={"quality_score": round(value, 4)})

    def validate(self, chunks: list[Chunk]) -> tuple[list[Chunk], list[Chunk]]:
        """Score *chunks* and split them into ``(accepted, rejected)``."""
        accepted: list[Chunk] = []
        rejected: list[Chunk] = []
        for chunk in chunks:
            scored = self.score(chunk)
            if scored.quality_score >= self._min_quality:
                accepted.append(scored)
            else:
                rejected.append(scored)

        if rejected:
            logger.debug(
                "quality_rejections",
                rejected=len(rejected),
                accepted=len(accepted),
                min_quality=self._min_quality,
            )
        return accepted, rejected
