"""Abstract base class for cache service providers.

The embedder caches vectors keyed by ``sha256(text) + model + type`` so a
chunk re-embedded within the TTL does not cost a provider round-trip.
Implementations may use an in-memory TTL map or any shared store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async so a network-backed store can be dropped in
    without blocking the event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None`` if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* for the cache's configured TTL."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*; a no-op if it does not exist."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""

    @abstractmethod
    def size(self) -> int:
        """Number of live entries."""
