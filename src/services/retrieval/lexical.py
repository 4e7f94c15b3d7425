"""BM25 lexical index over stored chunk content.

The index is cached and rebuilt only when the set of chunks changes
(fingerprint over chunk ids and content lengths).  Scores are clamped at
zero (Okapi IDF goes negative for terms in most documents) and saturated
with ``s / (s + k)``.  The mapping depends on nothing but the score
itself, so the best match of an unrelated query stays small instead of
being stretched to 1.0.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rank_bm25 import BM25Okapi

from src.models.chunk import Chunk
from src.utils.text import STOPWORDS, words


@dataclass(slots=True)
class _State:
    index: BM25Okapi | None
    chunk_ids: list[str]
    fingerprint: str


def tokenize(text: str) -> list[str]:
    return [w for w in words(text) if w not in STOPWORDS]


class LexicalIndex:
    """BM25 scores for chunks, rebuilt only when the chunk set changes.

    Parameters
    ----------
    saturation:
        ``k`` in ``s / (s + k)``; a raw BM25 score of ``k`` maps to 0.5.
    """

    def __init__(self, saturation: float = 2.0) -> None:
        self._saturation = saturation
        self._state = _State(index=None, chunk_ids=[], fingerprint="")

    def update(self, chunks: Sequence[Chunk]) -> None:
        fingerprint = self._fingerprint(chunks)
        if fingerprint == self._state.fingerprint:
            return
        corpus = [tokenize(c.content) for c in chunks]
        if not chunks or not any(corpus):
            self._state = _State(index=None, chunk_ids=[], fingerprint=fingerprint)
            return
        self._state = _State(
            index=BM25Okapi(corpus),
            chunk_ids=[c.chunk_id for c in chunks],
            fingerprint=fingerprint,
        )

    def scores(self, query: str) -> dict[str, float]:
        """Saturated BM25 score in (0, 1) per matching chunk id."""
        if self._state.index is None:
            return {}
        tokens = tokenize(query)
        if not tokens:
            return {}
        raw = [max(0.0, float(s)) for s in self._state.index.get_scores(tokens)]
        k = self._saturation
        return {cid: s / (s + k) for cid, s in zip(self._state.chunk_ids, raw, strict=True) if s > 0.0}

    @staticmethod
    def _fingerprint(chunks: Sequence[Chunk]) -> str:
        parts = [f"{c.chunk_id}:{len(c.content)}:{int(c.archived)}" for c in chunks]
        return "|".join(sorted(parts))
