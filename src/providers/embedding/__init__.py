"""Embedding provider implementations.

OpenAIEmbeddingProvider talks to OpenAI or any OpenAI-compatible
embeddings endpoint (set ``OPENAI_BASE_URL``).
"""

from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
