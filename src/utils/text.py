"""Text helpers shared by the chunking, embedding and retrieval layers.

Sentence splitting, word extraction, token estimation and set-overlap
similarity all live here so the chunker, boundary refiner, context assembler
and citation manager agree on exactly what a "word" and a "sentence" are.

Token counts are an approximation -- ``ceil(words * 1.33)`` -- rather than
real tokenizer output.  Chunk sizes therefore drift a little from true
subword counts; the trade is no tokenizer dependency and O(n) counting.
"""

from __future__ import annotations

import math
import re
from collections import Counter

TOKENS_PER_WORD = 1.33

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Vol",
        "No",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "inc",
        "ltd",
        "co",
        "e.g",
        "i.e",
        "Fig",
        "p",
        "pp",
    }
)

_WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'\-]*")
_SENTENCE_END_RE = re.compile(r"[.!?](?:[\"')\]]*)(?:\s|$)")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "can",
        "do", "does", "for", "from", "has", "have", "how", "i", "if", "in",
        "into", "is", "it", "its", "me", "my", "of", "on", "or", "our", "so",
        "than", "that", "the", "their", "them", "then", "there", "these",
        "they", "this", "those", "to", "was", "we", "were", "what", "when",
        "where", "which", "who", "why", "will", "with", "would", "you", "your",
        "about", "also", "all", "any", "each", "more", "most", "other", "some",
        "such", "only", "over", "very", "should", "could", "may", "might",
        "must", "not", "no", "yes", "between", "through", "during", "before",
        "after", "above", "below", "up", "down", "out", "off", "again",
    }
)


def estimate_tokens(text: str) -> int:
    """Return the approximate token count of *text* (words x 1.33, rounded up)."""
    return math.ceil(count_words(text) * TOKENS_PER_WORD)


def count_words(text: str) -> int:
    return len(text.split())


def words(text: str, min_length: int = 0) -> list[str]:
    """Lower-cased word tokens of *text* longer than *min_length* characters."""
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) > min_length]


def word_set(text: str, min_length: int = 0) -> set[str]:
    return set(words(text, min_length))


def jaccard(a: set[str], b: set[str]) -> float:
    """Jaccard similarity of two word sets; ``0.0`` when both are empty."""
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def text_jaccard(a: str, b: str, min_length: int = 0) -> float:
    return jaccard(word_set(a, min_length), word_set(b, min_length))


def split_paragraphs(text: str) -> list[str]:
    """Split *text* on blank lines, discarding empty pieces."""
    return [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]


def split_sentences(text: str) -> list[str]:
    """Split *text* at sentence boundaries while respecting abbreviations.

    Handles ``.``, ``!``, ``?`` (optionally followed by closing quotes or
    brackets) followed by whitespace or end-of-string.  Periods after known
    abbreviations are masked with ``\\x00`` first so "Dr. Smith" stays one
    sentence; the mask keeps indices aligned with the original text.
    """
    if not text or not text.strip():
        return []

    masked = text
    for abbr in _ABBREVIATIONS:
        masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)

    sentences: list[str] = []
    last = 0
    for match in _SENTENCE_END_RE.finditer(masked):
        end = match.end()
        sentence = " ".join(text[last:end].split())
        if sentence:
            sentences.append(sentence)
        last = end

    remainder = " ".join(text[last:].split())
    if remainder:
        sentences.append(remainder)

    return sentences


def extract_keywords(text: str, limit: int = 10) -> list[str]:
    """Return the *limit* most frequent non-stopword terms (length > 3).

    Ties are ordered by first appearance so the result is deterministic.
    """
    tokens = [w for w in words(text, min_length=3) if w not in STOPWORDS]
    if not tokens:
        return []
    counts = Counter(tokens)
    first_seen = {}
    for idx, tok in enumerate(tokens):
        first_seen.setdefault(tok, idx)
    ranked = sorted(counts, key=lambda t: (-counts[t], first_seen[t]))
    return ranked[:limit]


def truncate(text: str, length: int = 80) -> str:
    """Shorten *text* to *length* characters on a word boundary."""
    text = " ".join(text.split())
    if len(text) <= length:
        return text
    cut = text[:length].rsplit(" ", 1)[0]
    return cut or text[:length]
