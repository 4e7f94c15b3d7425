"""Multi-scale embedding generation.

For each chunk and each enabled :class:`EmbeddingType` the embedder builds a
type-specific text and asks the provider for one vector:

    content       the raw chunk text
    contextual    "Context: <ancestors>" + "Section: <heading>" + content
    hierarchical  "Document Structure: <path>" + "Content Level: <scale>"
                  + "Section: <heading>" + content
    semantic      "Key Concepts: <terms>" + content
                  + "Semantic Context: scale:.., length:.., structure:.."

Vectors are cached in a TTL cache keyed by ``sha256(text) + model + type``,
so re-embedding the same chunk within the TTL costs no provider call.
Provider failures, timeouts and non-finite vectors are retried with linear
backoff and then recorded as per-chunk :class:`EmbeddingFailure` entries;
one bad chunk never aborts the batch.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
from collections.abc import Callable, Sequence

import numpy as np
import structlog

from src.config.pipeline_config import EmbeddingConfig
from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.chunk import Chunk
from src.models.embedding import (
    Embedding,
    EmbeddingBatchResult,
    EmbeddingFailure,
    EmbeddingType,
)
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.utils.errors import JobCancelledError, ProviderError
from src.utils.similarity import is_valid_vector
from src.utils.text import extract_keywords

logger = structlog.get_logger(logger_name=__name__)

# Dimensions scaled by the vector-mode domain boost, and its ceiling.
_BOOST_DIMENSIONS = 100
_MAX_VECTOR_BOOST = 1.5

_SHORT_TOKENS = 100
_MEDIUM_TOKENS = 500


# ---------------------------------------------------------------------------
# Text builders
# ---------------------------------------------------------------------------

def contextual_text(chunk: Chunk) -> str:
    parts: list[str] = []
    if len(chunk.hierarchy_path) > 1:
        parts.append(f"Context: {' > '.join(chunk.hierarchy_path[:-1])}")
    if chunk.heading:
        parts.append(f"Section: {chunk.heading}")
    parts.append(chunk.content)
    return "\n\n".join(parts)


def hierarchical_text(chunk: Chunk) -> str:
    parts: list[str] = []
    if chunk.hierarchy_path:
        parts.append(f"Document Structure: {' > '.join(chunk.hierarchy_path)}")
    parts.append(f"Content Level: {chunk.scale.value}")
    if chunk.heading:
        parts.append(f"Section: {chunk.heading}")
    parts.append(chunk.content)
    return "\n\n".join(parts)


def semantic_annotations(chunk: Chunk) -> list[str]:
    if chunk.token_count < _SHORT_TOKENS:
        length = "short"
    elif chunk.token_count < _MEDIUM_TOKENS:
        length = "medium"
    else:
        length = "long"
    depth = len(chunk.hierarchy_path)
    structure = "nested" if depth > 2 else "sectioned" if depth > 1 else "flat"
    return [f"scale:{chunk.scale.value}", f"length:{length}", f"structure:{structure}"]


def semantic_text(chunk: Chunk, concepts: Sequence[str]) -> str:
    text = chunk.content
    if concepts:
        text = f"Key Concepts: {', '.join(concepts)}\n\n{text}"
    return f"{text}\n\nSemantic Context: {', '.join(semantic_annotations(chunk))}"


def matched_domain_terms(text: str, vocabulary: Sequence[str]) -> list[str]:
    lowered = text.lower()
    return [term for term in vocabulary if term.lower() in lowered]


def cache_key(text: str, model: str, embedding_type: EmbeddingType) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"{digest}:{model}:{embedding_type.value}"


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------

class MultiScaleEmbedder:
    """Generates every configured embedding type for a set of chunks.

    Parameters
    ----------
    provider:
        The embedding backend.
    config:
        Model, types, cache, retry, timeout, concurrency and boost settings.
    cache:
        Vector cache; a :class:`MemoryCacheProvider` sized from *config*
        when omitted and caching is enabled.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        config: EmbeddingConfig | None = None,
        cache: ICacheProvider | None = None,
    ) -> None:
        self._provider = provider
        self._config = config or EmbeddingConfig()
        if cache is None and self._config.cache_enabled:
            cache = MemoryCacheProvider(
                max_size=self._config.cache_max_size,
                ttl=self._config.cache_ttl_seconds,
            )
        self._cache = cache if self._config.cache_enabled else None
        self._semaphore = asyncio.Semaphore(self._config.concurrency)
        self._provider_calls = 0
        self._cache_hits = 0

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def provider_calls(self) -> int:
        """Provider round-trips made over this embedder's lifetime."""
        return self._provider_calls

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_text(self, chunk: Chunk, embedding_type: EmbeddingType) -> str:
        """The exact text sent to the provider for *chunk* under *embedding_type*."""
        if embedding_type == EmbeddingType.CONTEXTUAL:
            text = contextual_text(chunk)
        elif embedding_type == EmbeddingType.HIERARCHICAL:
            text = hierarchical_text(chunk)
        elif embedding_type == EmbeddingType.SEMANTIC:
            concepts = matched_domain_terms(chunk.content, self._config.domain_keywords)
            if not concepts:
                concepts = extract_keywords(chunk.content, self._config.semantic_keyword_count)
            text = semantic_text(chunk, concepts)
        else:
            text = chunk.content
        return self._boost_text(text)

    async def embed_chunks(
        self,
        chunks: Sequence[Chunk],
        embedding_types: Sequence[EmbeddingType] | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> EmbeddingBatchResult:
        """Embed every chunk under every type.

        ``should_cancel`` is polled before each provider request; once it
        returns ``True`` no further requests are issued and
        :class:`JobCancelledError` is raised.
        """
        types = tuple(embedding_types or self._config.embedding_types)
        calls_before, hits_before = self._provider_calls, self._cache_hits

        tasks = [
            self._embed_one(chunk, etype, should_cancel)
            for chunk in chunks
            for etype in types
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        embeddings: list[Embedding] = []
        failures: list[EmbeddingFailure] = []
        cancelled = False
        for outcome in outcomes:
            if isinstance(outcome, JobCancelledError):
                cancelled = True
            elif isinstance(outcome, Embedding):
                embeddings.append(outcome)
            elif isinstance(outcome, EmbeddingFailure):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
        if cancelled:
            raise JobCancelledError(message="embedding cancelled")

        dimension = embeddings[0].dimension if embeddings else 0
        result = EmbeddingBatchResult(
            embeddings=embeddings,
            failures=failures,
            model=self._config.model,
            dimension=dimension,
            cached=self._cache_hits - hits_before,
            provider_calls=self._provider_calls - calls_before,
        )
        logger.info(
            "embedding_complete",
            chunks=len(chunks),
            types=[t.value for t in types],
            generated=result.generated,
            cached=result.cached,
            provider_calls=result.provider_calls,
            failures=len(failures),
        )
        return result

    async def embed_query(
        self,
        query: str,
        embedding_type: EmbeddingType = EmbeddingType.CONTENT,
    ) -> list[float]:
        """Embed a query for similarity search against *embedding_type* vectors.

        Raises :class:`ProviderError` once retries are exhausted.
        """
        text = self._boost_text(query)
        vector = await self._cached_embed(text, embedding_type, should_cancel=None)
        return self._boost_vector(vector, text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_one(
        self,
        chunk: Chunk,
        embedding_type: EmbeddingType,
        should_cancel: Callable[[], bool] | None,
    ) -> Embedding | EmbeddingFailure:
        text = self.build_text(chunk, embedding_type)
        try:
            vector = await self._cached_embed(text, embedding_type, should_cancel)
        except ProviderError as exc:
            logger.warning(
                "embedding_failed",
                chunk_id=chunk.chunk_id,
                embedding_type=embedding_type.value,
                error=str(exc),
            )
            return EmbeddingFailure(
                chunk_id=chunk.chunk_id,
                embedding_type=embedding_type,
                error=str(exc),
                attempts=self._config.max_retries,
            )
        return Embedding(
            chunk_id=chunk.chunk_id,
            embedding_type=embedding_type,
            model=self._config.model,
            vector=self._boost_vector(vector, chunk.content),
        )

    async def _cached_embed(
        self,
        text: str,
        embedding_type: EmbeddingType,
        should_cancel: Callable[[], bool] | None,
    ) -> list[float]:
        key = cache_key(text, self._config.model, embedding_type)
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached is not None:
                self._cache_hits += 1
                return list(cached)

        vector = await self._embed_with_retry(text, should_cancel)
        if self._cache is not None:
            await self._cache.set(key, tuple(vector))
        return vector

    async def _embed_with_retry(
        self,
        text: str,
        should_cancel: Callable[[], bool] | None,
    ) -> list[float]:
        cfg = self._config
        last_error: Exception | None = None
        for attempt in range(1, cfg.max_retries + 1):
            try:
                async with self._semaphore:
                    # Polled after the slot is acquired so queued requests see a cancel.
                    if should_cancel is not None and should_cancel():
                        raise JobCancelledError(message="embedding cancelled")
                    self._provider_calls += 1
                    vector = await asyncio.wait_for(
                        self._provider.embed(text, cfg.model),
                        timeout=cfg.timeout_seconds,
                    )
                if not is_valid_vector(vector):
                    raise ProviderError(
                        message="provider returned an empty or non-finite vector",
                        provider_name=self._provider.get_provider_name(),
                    )
                return list(vector)
            except (ProviderError, asyncio.TimeoutError) as exc:
                last_error = exc
                logger.warning(
                    "embedding_retry",
                    provider=self._provider.get_provider_name(),
                    attempt=attempt,
                    max_retries=cfg.max_retries,
                    error=str(exc) or type(exc).__name__,
                )
                if attempt < cfg.max_retries:
                    await asyncio.sleep(cfg.retry_backoff_seconds * attempt)

        if isinstance(last_error, ProviderError):
            raise last_error
        raise ProviderError(
            message=f"embedding timed out after {cfg.timeout_seconds}s",
            provider_name=self._provider.get_provider_name(),
        ) from last_error

    def _boost_text(self, text: str) -> str:
        cfg = self._config
        if cfg.boost_mode != "text" or not cfg.domain_keywords:
            return text
        terms = matched_domain_terms(text, cfg.domain_keywords)
        if not terms:
            return text
        repeats = max(1, math.ceil(cfg.keyword_boost))
        return f"Domain Terms: {', '.join(t for t in terms for _ in range(repeats))}\n\n{text}"

    def _boost_vector(self, vector: list[float], text: str) -> list[float]:
        cfg = self._config
        if cfg.boost_mode != "vector" or not matched_domain_terms(text, cfg.domain_keywords):
            return vector
        arr = np.asarray(vector, dtype=np.float64)
        arr[:_BOOST_DIMENSIONS] *= min(cfg.keyword_boost, _MAX_VECTOR_BOOST)
        return arr.tolist()
