"""Abstract base class for text-embedding service providers.

Defines the contract for turning one piece of text into one vector.  The
embedder builds a different text per embedding type (content, contextual,
hierarchical, semantic) and asks the provider for each separately, so the
contract is single-text and names the model explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation:
#   OpenAIEmbeddingProvider -- text-embedding-3-small (requires API key)
# Located in: src/providers/embedding/
# Tests use a deterministic hashing provider defined in tests/conftest.py.
class IEmbeddingProvider(ABC):
    """Contract for embedding services used by the multi-scale embedder and
    by the retrieval engine to embed queries.
    """

    @abstractmethod
    async def embed(self, text: str, model: str) -> list[float]:
        """Return the embedding vector for *text* under *model*.

        Parameters
        ----------
        text:
            The text to embed.  Already framed for its embedding type.
        model:
            Model identifier, e.g. ``"text-embedding-3-small"``.

        Returns
        -------
        list[float]
            A non-empty vector whose dimension is fixed for a given model.

        Raises
        ------
        src.utils.errors.ProviderError
            If the embedding call fails.  Rate limits raise the
            :class:`~src.utils.errors.RateLimitError` subclass.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
