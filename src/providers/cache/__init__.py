"""Cache providers.

MemoryCacheProvider is a TTL map local to one process.  For a cache shared
between workers, implement ICacheProvider over a shared store; the embedder
does not change.
"""

from src.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
