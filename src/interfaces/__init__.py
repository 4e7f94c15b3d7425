"""Public interface definitions for docuweave's external collaborators.

The pipeline reaches every external service through the abstract base
classes defined here.  Concrete adapters live in ``src/providers/`` and are
injected by whoever builds the orchestrator or retrieval service; tests
inject fakes.

CONCRETE PROVIDER MAP:
    Interface            ->  Concrete implementations (in src/providers/)
    ---------------------------------------------------------------------
    IEmbeddingProvider   ->  OpenAIEmbeddingProvider
    IKnowledgeStore      ->  InMemoryKnowledgeStore, SQLiteKnowledgeStore
    ICacheProvider       ->  MemoryCacheProvider
"""

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.knowledge_store import IKnowledgeStore

__all__ = [
    "ICacheProvider",
    "IEmbeddingProvider",
    "IKnowledgeStore",
]
