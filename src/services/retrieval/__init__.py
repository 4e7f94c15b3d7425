"""Query analysis, lexical scoring and the four-strategy retrieval engine."""

from src.services.retrieval.lexical import LexicalIndex
from src.services.retrieval.query_analyzer import QueryAnalyzer
from src.services.retrieval.retrieval_engine import RetrievalEngine

__all__ = ["LexicalIndex", "QueryAnalyzer", "RetrievalEngine"]
