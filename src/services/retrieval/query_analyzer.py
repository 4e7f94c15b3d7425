"""Query analysis: type, complexity, key terms, entities and intent.

Pure text heuristics, no model calls.  The analysis steers the contextual
retrieval strategy (intent cue words) and the context component of the
confidence assessor (clarity, complexity, domain relevance).
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from src.models.retrieval import QueryAnalysis, QueryComplexity, QueryType

# Checked in order; the first match is the primary query type.
QUERY_PATTERNS: dict[QueryType, re.Pattern[str]] = {
    QueryType.DEFINITION: re.compile(r"\b(?:what is|define|definition of|meaning of)\b", re.I),
    QueryType.PROCEDURE: re.compile(r"\b(?:how to|how do|steps to|process for|procedure)\b", re.I),
    QueryType.COMPARISON: re.compile(r"\b(?:difference between|compare|versus|vs)\b", re.I),
    QueryType.LIST: re.compile(r"\b(?:list|enumerate|what are)\b", re.I),
    QueryType.EXAMPLE: re.compile(r"\b(?:example|instance|sample)s?\b", re.I),
    QueryType.TROUBLESHOOTING: re.compile(r"\b(?:error|problem|issue|fix|solve)s?\b", re.I),
}

QUESTION_WORDS = ("what", "how", "when", "where", "why", "which", "who")

_MODERATE_WORDS = 8
_COMPLEX_WORDS = 15

_KEY_TERM_STOPWORDS = frozenset(
    {*QUESTION_WORDS, "the", "and", "or", "but", "for", "with", "does", "this", "that", "there"}
)
_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'\-]*")


class QueryAnalyzer:
    """Derives a :class:`QueryAnalysis` from query text.

    Parameters
    ----------
    domain_vocabulary:
        Terms that count as entities when they appear in the query, on top
        of capitalised tokens.
    """

    def __init__(self, domain_vocabulary: Sequence[str] = ()) -> None:
        self._vocabulary = tuple(domain_vocabulary)

    def analyze(self, query: str) -> QueryAnalysis:
        normalized = " ".join(query.split())
        lowered = normalized.lower()
        tokens = _TOKEN_RE.findall(normalized)
        word_count = len(normalized.split()) if normalized else 0

        intents = [qtype for qtype, pattern in QUERY_PATTERNS.items() if pattern.search(normalized)]
        query_type = intents[0] if intents else QueryType.GENERAL

        if word_count > _COMPLEX_WORDS or len(intents) > 2:
            complexity = QueryComplexity.COMPLEX
        elif word_count > _MODERATE_WORDS or len(intents) > 1:
            complexity = QueryComplexity.MODERATE
        else:
            complexity = QueryComplexity.SIMPLE

        key_terms: list[str] = []
        for tok in (t.lower() for t in tokens):
            if len(tok) > 3 and tok not in _KEY_TERM_STOPWORDS and tok not in key_terms:
                key_terms.append(tok)

        entities: list[str] = []
        for idx, tok in enumerate(tokens):
            # The first token is capitalised by grammar, not because it names something.
            if idx > 0 and tok[0].isupper() and tok.lower() not in QUESTION_WORDS and tok not in entities:
                entities.append(tok)
        for term in self._vocabulary:
            if term.lower() in lowered and term not in entities:
                entities.append(term)

        question_words = [w for w in QUESTION_WORDS if re.search(rf"\b{w}\b", lowered)]

        return QueryAnalysis(
            original=query,
            normalized=normalized,
            query_type=query_type,
            intents=intents,
            complexity=complexity,
            word_count=word_count,
            key_terms=key_terms,
            entities=entities,
            question_words=question_words,
            has_intent=bool(intents),
        )
