"""Chunk models and the arena table that holds a document's chunk graph.

A :class:`Chunk` is the unit of retrieval.  Chunks exist at four scales --
document, section, paragraph, sentence -- and are linked into a tree by
``parent_id`` / ``child_ids`` plus a flat ``sibling_ids`` relation (same
scale, same top-level heading).

Relationships are plain id references, never object pointers.  During
chunking all chunks of one document live in a :class:`ChunkTable`: a flat
list plus an ``id -> index`` map, so "give me this chunk's parent" is a dict
lookup and there is no cyclic object graph to serialise or garbage-collect.
Because :class:`Chunk` is frozen, setting a relation replaces the row with a
``model_copy(update=...)``.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChunkScale(str, Enum):  # noqa: UP042
    """Granularity of a chunk, coarsest first."""

    DOCUMENT = "document"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"

    @property
    def rank(self) -> int:
        """0 for DOCUMENT up to 3 for SENTENCE."""
        return _SCALE_ORDER.index(self)

    @property
    def coarser(self) -> ChunkScale | None:
        """The scale one step toward the root, or ``None`` for DOCUMENT."""
        idx = self.rank
        return _SCALE_ORDER[idx - 1] if idx > 0 else None

    @property
    def finer(self) -> ChunkScale | None:
        idx = self.rank
        return _SCALE_ORDER[idx + 1] if idx + 1 < len(_SCALE_ORDER) else None


_SCALE_ORDER: list[ChunkScale] = [
    ChunkScale.DOCUMENT,
    ChunkScale.SECTION,
    ChunkScale.PARAGRAPH,
    ChunkScale.SENTENCE,
]


# ---------------------------------------------------------------------------
# Chunk -- the fundamental unit of the knowledge base.
# ---------------------------------------------------------------------------
class Chunk(BaseModel):
    """A span of document text at one scale, with its place in the hierarchy.

    Content changes never mutate a chunk: new content means a new
    ``chunk_id`` (and therefore new embeddings).
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Unique identifier (UUID4) for this chunk.")
    source_id: str = Field(description="Identifier of the originating document.")
    version: str = Field(description="Version of the originating document.")
    scale: ChunkScale = Field(description="Granularity of this chunk.")
    content: str = Field(description="The chunk's text.")
    token_count: int = Field(default=0, ge=0, description="Approximate token count (words x 1.33).")
    heading: str = Field(default="", description="Nearest section heading, if any.")
    hierarchy_path: list[str] = Field(
        default_factory=list,
        description="Ordered ancestor headings, top-level first.",
    )
    position: int = Field(default=0, ge=0, description="Emission order within the document.")
    page: int | None = Field(
        default=None, ge=1, description="1-based page (form-feed separated) where the chunk starts."
    )
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    refined: bool = Field(
        default=False,
        description="True for sub-chunks produced by semantic boundary refinement.",
    )
    archived: bool = Field(
        default=False,
        description="True once a newer version of the source replaced this one.",
    )
    # --- Relationships (weak, id-based) ---
    parent_id: str | None = Field(default=None, description="At most one parent, one scale coarser.")
    child_ids: list[str] = Field(default_factory=list)
    sibling_ids: list[str] = Field(default_factory=list)

    @property
    def top_level_heading(self) -> str:
        """The top-level ancestor used to group siblings."""
        return self.hierarchy_path[0] if self.hierarchy_path else ""

    @property
    def depth(self) -> int:
        return len(self.hierarchy_path)


# ---------------------------------------------------------------------------
# ChunkTable -- arena storage for one document's chunks.
# ---------------------------------------------------------------------------
class ChunkTable:
    """Flat, insertion-ordered chunk storage with id-indexed relations.

    Parameters
    ----------
    chunks:
        Optional initial rows.
    """

    def __init__(self, chunks: list[Chunk] | None = None) -> None:
        self._rows: list[Chunk] = []
        self._index: dict[str, int] = {}
        for chunk in chunks or []:
            self.add(chunk)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, chunk: Chunk) -> None:
        if chunk.chunk_id in self._index:
            raise ValueError(f"duplicate chunk id {chunk.chunk_id}")
        self._index[chunk.chunk_id] = len(self._rows)
        self._rows.append(chunk)

    def replace(self, chunk: Chunk) -> None:
        """Swap in a new copy of an existing row (same id)."""
        self._rows[self._index[chunk.chunk_id]] = chunk

    def update(self, chunk_id: str, **fields: object) -> Chunk:
        updated = self.get(chunk_id).model_copy(update=fields)
        self.replace(updated)
        return updated

    def link(self, child_id: str, parent_id: str) -> None:
        """Record a parent/child edge in both rows."""
        self.update(child_id, parent_id=parent_id)
        parent = self.get(parent_id)
        if child_id not in parent.child_ids:
            self.update(parent_id, child_ids=[*parent.child_ids, child_id])

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, chunk_id: str) -> Chunk:
        return self._rows[self._index[chunk_id]]

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._index

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(list(self._rows))

    def by_scale(self, scale: ChunkScale) -> list[Chunk]:
        return [c for c in self._rows if c.scale == scale]

    def parent_of(self, chunk_id: str) -> Chunk | None:
        parent_id = self.get(chunk_id).parent_id
        if parent_id is None or parent_id not in self._index:
            return None
        return self.get(parent_id)

    def children_of(self, chunk_id: str) -> list[Chunk]:
        return [self.get(cid) for cid in self.get(chunk_id).child_ids if cid in self._index]

    def siblings_of(self, chunk_id: str) -> list[Chunk]:
        return [self.get(sid) for sid in self.get(chunk_id).sibling_ids if sid in self._index]

    def ancestors_of(self, chunk_id: str) -> list[Chunk]:
        """Walk parent links to the root (nearest first)."""
        chain: list[Chunk] = []
        seen = {chunk_id}
        current = self.parent_of(chunk_id)
        while current is not None and current.chunk_id not in seen:
            chain.append(current)
            seen.add(current.chunk_id)
            current = self.parent_of(current.chunk_id)
        return chain

    def to_list(self) -> list[Chunk]:
        return list(self._rows)


class ChunkingStats(BaseModel):
    """Counts gathered while chunking one document."""

    model_config = ConfigDict(frozen=True)

    chunks_by_scale: dict[str, int] = Field(default_factory=dict)
    total_chunks: int = 0
    average_tokens: float = 0.0
    average_quality: float = 0.0
    dropped_out_of_band: int = 0
    quality_rejections: int = 0
    refined_chunks: int = 0
    linked_parents: int = 0
