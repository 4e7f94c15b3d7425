"""Knowledge store adapters.

InMemoryKnowledgeStore keeps everything in dicts (tests, notebooks,
single-process runs).  SQLiteKnowledgeStore persists to one aiosqlite file.
"""

from src.providers.store.memory_store import InMemoryKnowledgeStore
from src.providers.store.sqlite_store import SQLiteKnowledgeStore

__all__ = ["InMemoryKnowledgeStore", "SQLiteKnowledgeStore"]
