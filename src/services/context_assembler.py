"""Context assembly for retrieved chunks.

Turns a ranked :class:`RetrievalResult` into the context handed to a
generator, in five passes:

1. **Expansion** -- for the top hits, pull in the parent (score x 0.8) and
   children / siblings (score x 0.9), at most ``max_expansion`` per hit.
2. **Ranking** -- sort everything by score, best first.
3. **Redundancy reduction** -- drop a chunk whose word Jaccard with an
   already selected, higher-ranked chunk exceeds the ceiling.
4. **Token budget** -- stop adding chunks once ``max_context_tokens`` is
   reached.  The best chunk is always kept.
5. **Ordering** -- lost-in-middle mitigation (high-relevance chunks at
   both ends, low-relevance in the middle) or, when configured, a
   round-robin interleave across sources.
"""

from __future__ import annotations

from collections import defaultdict

import structlog

from src.config.pipeline_config import ContextConfig
from src.interfaces.knowledge_store import IKnowledgeStore
from src.models.chunk import Chunk
from src.models.retrieval import AssembledContext, RetrievalResult, RetrievedChunk
from src.utils.text import text_jaccard

logger = structlog.get_logger(logger_name=__name__)


class ContextAssembler:
    """Builds an :class:`AssembledContext` from retrieval hits.

    Parameters
    ----------
    store:
        Knowledge store used to fetch parents, children and siblings.
    config:
        Expansion limits, redundancy ceiling, relevance bands and budget.
    """

    def __init__(self, store: IKnowledgeStore, config: ContextConfig | None = None) -> None:
        self._store = store
        self._config = config or ContextConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def assemble(self, result: RetrievalResult) -> AssembledContext:
        cfg = self._config
        if not result.items:
            return AssembledContext()

        items = list(result.items)
        expanded = 0
        if cfg.enable_expansion and cfg.max_expansion > 0:
            extra = await self._expand(items)
            expanded = len(extra)
            items.extend(extra)

        items.sort(key=lambda i: (-i.score, i.chunk.position, i.chunk.chunk_id))
        kept, redundant = self.reduce_redundancy(items)
        budgeted, truncated, total_tokens = self._apply_budget(kept)

        if cfg.interleave_sources:
            ordered = self.interleave_sources(budgeted)
        elif cfg.lost_in_middle:
            ordered = self.reorder_for_attention(budgeted)
        else:
            ordered = budgeted

        logger.debug(
            "context_assembled",
            hits=len(result.items),
            expanded=expanded,
            redundant_removed=redundant,
            truncated=truncated,
            total_tokens=total_tokens,
        )
        return AssembledContext(
            items=ordered,
            total_tokens=total_tokens,
            expanded=expanded,
            redundant_removed=redundant,
            truncated=truncated,
        )

    def relevance_band(self, score: float) -> str:
        """``"high"`` above 0.8, ``"medium"`` above 0.6, else ``"low"``."""
        if score > self._config.high_relevance:
            return "high"
        if score > self._config.medium_relevance:
            return "medium"
        return "low"

    def reduce_redundancy(self, items: list[RetrievedChunk]) -> tuple[list[RetrievedChunk], int]:
        """Keep items in order, dropping near-duplicates of earlier ones.

        *items* must already be ranked best first so the higher-ranked of
        two near-duplicates survives.
        """
        ceiling = self._config.redundancy_ceiling
        kept: list[RetrievedChunk] = []
        removed = 0
        for item in items:
            if any(text_jaccard(item.chunk.content, k.chunk.content) > ceiling for k in kept):
                removed += 1
                continue
            kept.append(item)
        return kept, removed

    def reorder_for_attention(self, items: list[RetrievedChunk]) -> list[RetrievedChunk]:
        """Place the strongest chunks at both ends and the weakest in the middle.

        Items are banded (high / medium / low) and dealt alternately to the
        front and the back, band by band, so high-relevance chunks occupy
        the positions a reader attends to most.
        """
        bands: dict[str, list[RetrievedChunk]] = {"high": [], "medium": [], "low": []}
        for item in sorted(items, key=lambda i: -i.score):
            bands[self.relevance_band(item.score)].append(item)

        front: list[RetrievedChunk] = []
        back: list[RetrievedChunk] = []
        for band in ("high", "medium", "low"):
            for item in bands[band]:
                (front if len(front) <= len(back) else back).append(item)
        return front + back[::-1]

    @staticmethod
    def interleave_sources(items: list[RetrievedChunk]) -> list[RetrievedChunk]:
        """Round-robin across source ids, keeping each source's own order."""
        by_source: dict[str, list[RetrievedChunk]] = defaultdict(list)
        for item in items:
            by_source[item.chunk.source_id].append(item)
        queues = list(by_source.values())
        ordered: list[RetrievedChunk] = []
        depth = max((len(q) for q in queues), default=0)
        for idx in range(depth):
            ordered.extend(q[idx] for q in queues if idx < len(q))
        return ordered

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _expand(self, items: list[RetrievedChunk]) -> list[RetrievedChunk]:
        cfg = self._config
        seen = {i.chunk.chunk_id for i in items}
        extra: list[RetrievedChunk] = []

        for hit in items[: cfg.expand_top_n]:
            chunk = hit.chunk
            candidates: list[tuple[str, float]] = []
            if chunk.parent_id:
                candidates.append((chunk.parent_id, cfg.parent_decay))
            candidates.extend((cid, cfg.child_decay) for cid in chunk.child_ids)
            candidates.extend((cid, cfg.child_decay) for cid in chunk.sibling_ids)

            wanted = [(cid, decay) for cid, decay in candidates if cid not in seen]
            if not wanted:
                continue
            fetched: dict[str, Chunk] = {
                c.chunk_id: c for c in await self._store.get_chunks([cid for cid, _ in wanted])
            }

            added = 0
            for cid, decay in wanted:
                if added >= cfg.max_expansion:
                    break
                related = fetched.get(cid)
                if related is None or related.archived or cid in seen:
                    continue
                seen.add(cid)
                extra.append(
                    hit.model_copy(
                        update={
                            "chunk": related,
                            "score": hit.score * decay,
                            "vector_score": None,
                            "lexical_score": None,
                            "expanded_from": chunk.chunk_id,
                        }
                    )
                )
                added += 1
        return extra

    def _apply_budget(self, items: list[RetrievedChunk]) -> tuple[list[RetrievedChunk], int, int]:
        budget = self._config.max_context_tokens
        selected: list[RetrievedChunk] = []
        total = 0
        for idx, item in enumerate(items):
            tokens = item.chunk.token_count
            if selected and total + tokens > budget:
                return selected, len(items) - idx, total
            selected.append(item)
            total += tokens
        return selected, 0, total
