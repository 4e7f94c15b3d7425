"""In-memory cache provider using cachetools.TTLCache.

Holds embedding vectors for the multi-scale embedder.  Entries expire after
the configured TTL and the least-recently-used entry is evicted once
``max_size`` is reached.
"""

from __future__ import annotations

from typing import Any

import structlog
from cachetools import TTLCache

from src.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TTLCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before eviction.
    ttl:
        Time-to-live in seconds, applied uniformly to every entry.
    timer:
        Clock used by the TTL check; tests pass a fake to expire entries
        without sleeping.
    """

    def __init__(self, max_size: int = 10000, ttl: int = 3600, timer: Any = None) -> None:
        kwargs: dict[str, Any] = {"maxsize": max_size, "ttl": ttl}
        if timer is not None:
            kwargs["timer"] = timer
        self._cache: TTLCache[str, Any] = TTLCache(**kwargs)

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        logger.debug("cache_hit" if value is not None else "cache_miss", key=key[:16])
        return value

    async def set(self, key: str, value: Any) -> None:
        self._cache[key] = value

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._cache

    def size(self) -> int:
        return len(self._cache)
