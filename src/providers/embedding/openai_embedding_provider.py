"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Works against real OpenAI and OpenAI-compatible endpoints (TogetherAI,
local gateways) via ``openai_base_url``.  The model is chosen per call by
the embedder, so one provider instance serves every configured model.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.utils.errors import ProviderError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

# Inputs longer than this many characters are cut on a word boundary.
# text-embedding-3-* accept 8191 tokens; ~4 chars per token leaves margin.
_MAX_INPUT_CHARS = 30000


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        # Build client kwargs; base_url only when configured.
        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": settings.embedding_timeout_seconds,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, text: str, model: str) -> list[float]:
        if len(text) > _MAX_INPUT_CHARS:
            text = text[:_MAX_INPUT_CHARS].rsplit(" ", 1)[0]
        try:
            response = await self._client.embeddings.create(input=[text], model=model)
        except openai.RateLimitError as exc:
            raise RateLimitError(
                message=f"{self._provider_label} rate limited: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APITimeoutError as exc:
            raise ProviderError(
                message=f"{self._provider_label} timed out",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise ProviderError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not response.data:
            raise ProviderError(
                message=f"{self._provider_label} returned no embedding",
                provider_name=self.get_provider_name(),
            )
        logger.debug(
            "openai_embedding",
            model=model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return list(response.data[0].embedding)

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
