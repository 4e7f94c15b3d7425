"""docuweave composition root.

Wires settings, the pipeline config, the knowledge store, the embedding
provider and the two caller-facing services together:

    Settings + config.yaml -> PipelineConfig
    store backend          -> SQLiteKnowledgeStore | InMemoryKnowledgeStore
    OPENAI_API_KEY         -> OpenAIEmbeddingProvider (or an injected provider)
    embedder               -> IngestionOrchestrator, RetrievalService

Nothing here runs at import time; callers build what they need with
:func:`build_pipeline` (or :func:`open_pipeline`, which also initializes
the store).
"""

from __future__ import annotations

from typing import Any

import structlog

from src.config.loader import build_pipeline_config, load_config
from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.knowledge_store import IKnowledgeStore
from src.pipeline.ingestion_orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressTracker
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.store.memory_store import InMemoryKnowledgeStore
from src.providers.store.sqlite_store import SQLiteKnowledgeStore
from src.services.embedding.multi_scale_embedder import MultiScaleEmbedder
from src.services.retrieval_service import RetrievalService
from src.utils.errors import ConfigurationError
from src.utils.logging import configure_logging, get_logger

_STORE_BACKENDS = ("sqlite", "memory")


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_store(config: dict[str, Any], app_settings: Settings) -> IKnowledgeStore:
    store_cfg = config.get("store", {}) or {}
    backend = str(store_cfg.get("backend") or app_settings.store_backend).lower()
    if backend not in _STORE_BACKENDS:
        raise ConfigurationError(
            f"Unknown store backend {backend!r}; expected one of {', '.join(_STORE_BACKENDS)}"
        )
    if backend == "memory":
        return InMemoryKnowledgeStore()
    return SQLiteKnowledgeStore(store_cfg.get("sqlite_db_path") or app_settings.sqlite_db_path)


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """OpenAI (or OpenAI-compatible) embeddings; requires ``OPENAI_API_KEY``."""
    provider = OpenAIEmbeddingProvider(settings=app_settings)
    if not provider.is_available():
        raise ConfigurationError(
            "No embedding provider configured: set OPENAI_API_KEY or pass embedding_provider"
        )
    return provider


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_pipeline(
    custom_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    store: IKnowledgeStore | None = None,
) -> dict[str, Any]:
    """Construct every pipeline component with injected dependencies.

    Parameters
    ----------
    custom_settings:
        Deployment settings; read from the environment when omitted.
    config:
        Resolved configuration dict (the shape of ``config/config.yaml``);
        loaded with :func:`load_config` when omitted.
    embedding_provider:
        Overrides the OpenAI provider (tests, local models).
    store:
        Overrides the configured store backend.

    Returns
    -------
    dict
        Components keyed by role: ``settings``, ``config``, ``store``,
        ``embedding_provider``, ``embedder``, ``progress_tracker``,
        ``orchestrator`` and ``retrieval``.
    """
    s = custom_settings or Settings()
    resolved = config if config is not None else load_config(settings=s)

    log_level = (resolved.get("logging", {}) or {}).get("level") or s.log_level
    configure_logging(log_level=log_level, json_output=(s.app_env == "production"))
    logger: structlog.BoundLogger = get_logger(__name__)

    pipeline_config = build_pipeline_config(resolved)
    store = store or _build_store(resolved, s)
    provider = embedding_provider or _build_embedding_provider(s)

    cache = MemoryCacheProvider(
        max_size=pipeline_config.embedding.cache_max_size,
        ttl=pipeline_config.embedding.cache_ttl_seconds,
    )
    embedder = MultiScaleEmbedder(provider, pipeline_config.embedding, cache)
    tracker = ProgressTracker()
    orchestrator = IngestionOrchestrator(store, embedder, pipeline_config, tracker)
    retrieval = RetrievalService(store, embedder, pipeline_config)

    logger.info(
        "pipeline_built",
        store=store.get_provider_name(),
        embedding_provider=provider.get_provider_name(),
        embedding_model=pipeline_config.embedding.model,
        embedding_types=[t.value for t in pipeline_config.embedding.embedding_types],
        retrieval_strategy=pipeline_config.retrieval.strategy.value,
    )
    return {
        "settings": s,
        "config": pipeline_config,
        "store": store,
        "embedding_provider": provider,
        "embedder": embedder,
        "progress_tracker": tracker,
        "orchestrator": orchestrator,
        "retrieval": retrieval,
    }


async def open_pipeline(
    custom_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    store: IKnowledgeStore | None = None,
) -> dict[str, Any]:
    """:func:`build_pipeline`, then create the store's tables."""
    components = build_pipeline(custom_settings, config, embedding_provider, store)
    await components["store"].initialize()
    return components
