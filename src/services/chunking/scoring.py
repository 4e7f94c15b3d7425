"""Named scoring functions for chunk linking, refinement and quality.

Every heuristic weight used by the chunking layer lives here as a named
constant next to the function that applies it, so each can be unit tested
in isolation.

Parent-child score (0..1)::

    0.4 * containment      1.0 if the child text is a substring of the parent,
                           else |child words & parent words| / |child words|
    0.3 * path prefix      1.0 if the parent's hierarchy path is a proper
                           prefix of the child's, else 0.0
    0.2 * proximity        max(0, 1 - |child.position - parent.position| / window)
    0.1 * word overlap     Jaccard over words longer than 3 characters

Quality score (0..1)::

    0.5 base
    + 0.2 token count within the ideal band
    + 0.1 non-empty heading
    + 0.1 hierarchy depth > 1
    + 0.1 sentence count between 2 and 10
"""

from __future__ import annotations

from src.models.chunk import Chunk
from src.utils.text import jaccard, split_sentences, word_set

PARENT_WEIGHTS: dict[str, float] = {
    "containment": 0.4,
    "path_prefix": 0.3,
    "proximity": 0.2,
    "word_overlap": 0.1,
}

QUALITY_BASE = 0.5
QUALITY_TOKEN_BONUS = 0.2
QUALITY_HEADING_BONUS = 0.1
QUALITY_DEPTH_BONUS = 0.1
QUALITY_SENTENCE_BONUS = 0.1
QUALITY_MIN_SENTENCES = 2
QUALITY_MAX_SENTENCES = 10

# Words longer than this count toward the overlap / refinement similarities.
OVERLAP_MIN_WORD_LENGTH = 3
BOUNDARY_MIN_WORD_LENGTH = 2


# ---------------------------------------------------------------------------
# Parent / child components
# ---------------------------------------------------------------------------

def containment_score(
    child_text: str,
    parent_text: str,
    child_words: set[str] | None = None,
    parent_words: set[str] | None = None,
) -> float:
    """How much of the child is contained in the parent."""
    if child_text and child_text in parent_text:
        return 1.0
    child_words = child_words if child_words is not None else word_set(child_text)
    if not child_words:
        return 0.0
    parent_words = parent_words if parent_words is not None else word_set(parent_text)
    return len(child_words & parent_words) / len(child_words)


def path_prefix_score(child_path: list[str], parent_path: list[str]) -> float:
    """1.0 when *parent_path* is a proper prefix of *child_path*."""
    if not parent_path or len(parent_path) >= len(child_path):
        return 0.0
    return 1.0 if child_path[: len(parent_path)] == parent_path else 0.0


def proximity_score(child_position: int, parent_position: int, window: int = 10) -> float:
    return max(0.0, 1.0 - abs(child_position - parent_position) / window)


def word_overlap_score(child_long_words: set[str], parent_long_words: set[str]) -> float:
    return jaccard(child_long_words, parent_long_words)


class WordCache:
    """Memoises per-chunk word sets during one linking pass."""

    def __init__(self) -> None:
        self._all: dict[str, set[str]] = {}
        self._long: dict[str, set[str]] = {}

    def all_words(self, chunk: Chunk) -> set[str]:
        if chunk.chunk_id not in self._all:
            self._all[chunk.chunk_id] = word_set(chunk.content)
        return self._all[chunk.chunk_id]

    def long_words(self, chunk: Chunk) -> set[str]:
        if chunk.chunk_id not in self._long:
            self._long[chunk.chunk_id] = word_set(chunk.content, OVERLAP_MIN_WORD_LENGTH)
        return self._long[chunk.chunk_id]


def parent_child_score(
    child: Chunk,
    parent: Chunk,
    window: int = 10,
    cache: WordCache | None = None,
) -> float:
    """Weighted parent-child score; see module docstring for the weights."""
    cache = cache or WordCache()
    components = {
        "containment": containment_score(
            child.content,
            parent.content,
            cache.all_words(child),
            cache.all_words(parent),
        ),
        "path_prefix": path_prefix_score(child.hierarchy_path, parent.hierarchy_path),
        "proximity": proximity_score(child.position, parent.position, window),
        "word_overlap": word_overlap_score(cache.long_words(child), cache.long_words(parent)),
    }
    return sum(PARENT_WEIGHTS[name] * value for name, value in components.items())


# ---------------------------------------------------------------------------
# Boundary refinement
# ---------------------------------------------------------------------------

def sentence_similarity(a: str, b: str) -> float:
    """Adjacent-sentence similarity: Jaccard over words longer than 2 characters."""
    return jaccard(word_set(a, BOUNDARY_MIN_WORD_LENGTH), word_set(b, BOUNDARY_MIN_WORD_LENGTH))


# ---------------------------------------------------------------------------
# Quality
# ---------------------------------------------------------------------------

def quality_score(
    chunk: Chunk,
    ideal_min_tokens: int = 50,
    ideal_max_tokens: int = 500,
    sentence_count: int | None = None,
) -> float:
    """Heuristic quality of *chunk* in [0, 1]."""
    score = QUALITY_BASE
    if ideal_min_tokens <= chunk.token_count <= ideal_max_tokens:
        score += QUALITY_TOKEN_BONUS
    if chunk.heading.strip():
        score += QUALITY_HEADING_BONUS
    if chunk.depth > 1:
        score += QUALITY_DEPTH_BONUS
    if sentence_count is None:
        sentence_count = len(split_sentences(chunk.content))
    if QUALITY_MIN_SENTENCES <= sentence_count <= QUALITY_MAX_SENTENCES:
        score += QUALITY_SENTENCE_BONUS
    return max(0.0, min(1.0, score))
