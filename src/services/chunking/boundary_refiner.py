"""Semantic boundary refinement for paragraph- and sentence-scale chunks.

A chunk with more than two sentences is re-split wherever two adjacent
sentences share little vocabulary (Jaccard over words longer than two
characters below ``threshold``).  A boundary is never placed after the final
sentence.  Each resulting span becomes a new chunk only if its trimmed text
is longer than ``min_chars``; shorter spans are dropped.

Refinement is best-effort: if it finds no boundary, drops every span, or
raises, the original chunk is returned unchanged.
"""

from __future__ import annotations

import uuid

import structlog

from src.models.chunk import Chunk, ChunkScale
from src.services.chunking.scoring import sentence_similarity
from src.utils.text import estimate_tokens, split_sentences

logger = structlog.get_logger(logger_name=__name__)

_REFINABLE_SCALES = frozenset({ChunkScale.PARAGRAPH, ChunkScale.SENTENCE})


class SemanticBoundaryRefiner:
    """Splits chunks at low-similarity sentence transitions.

    Parameters
    ----------
    threshold:
        Adjacent-sentence similarity below which a boundary is declared.
    min_chars:
        Sub-spans whose trimmed text is not longer than this are dropped.
    """

    def __init__(self, threshold: float = 0.3, min_chars: int = 50) -> None:
        self._threshold = threshold
        self._min_chars = min_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def refine(self, chunk: Chunk) -> list[Chunk]:
        """Return the refined sub-chunks of *chunk*, or ``[chunk]``."""
        if chunk.scale not in _REFINABLE_SCALES:
            return [chunk]
        try:
            return self._refine(chunk)
        except Exception as exc:  # noqa: BLE001
            logger.warning("boundary_refinement_failed", chunk_id=chunk.chunk_id, error=str(exc))
            return [chunk]

    def find_boundaries(self, sentences: list[str]) -> list[int]:
        """Indices *i* such that a new span starts at ``sentences[i]``.

        Never returns the index of the last sentence.
        """
        boundaries: list[int] = []
        for i in range(1, len(sentences) - 1):
            if sentence_similarity(sentences[i - 1], sentences[i]) < self._threshold:
                boundaries.append(i)
        return boundaries

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _refine(self, chunk: Chunk) -> list[Chunk]:
        sentences = split_sentences(chunk.content)
        if len(sentences) <= 2:
            return [chunk]

        boundaries = self.find_boundaries(sentences)
        if not boundaries:
            return [chunk]

        edges = [0, *boundaries, len(sentences)]
        spans = [" ".join(sentences[a:b]).strip() for a, b in zip(edges, edges[1:], strict=False)]
        kept = [s for s in spans if len(s) > self._min_chars]
        if not kept:
            return [chunk]

        refined = [
            chunk.model_copy(
                update={
                    "chunk_id": str(uuid.uuid4()),
                    "content": span,
                    "token_count": estimate_tokens(span),
                    "refined": True,
                    "parent_id": None,
                    "child_ids": [],
                    "sibling_ids": [],
                }
            )
            for span in kept
        ]
        logger.debug(
            "chunk_refined",
            chunk_id=chunk.chunk_id,
            sentences=len(sentences),
            spans=len(spans),
            kept=len(refined),
        )
        return refined
