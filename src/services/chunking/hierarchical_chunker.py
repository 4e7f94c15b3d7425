"""Hierarchical, multi-scale chunking of a parsed document.

Produces chunks at four scales from one :class:`StructureNode` tree:

    document   -- the whole text (split into parts only if it exceeds the band)
    section    -- each top-level section
    paragraph  -- each paragraph; consecutive short paragraphs are packed
                  together until they reach the band minimum
    sentence   -- each paragraph's sentences, greedily packed into the band

The pipeline for one document is::

    parse -> generate (per scale, band-checked) -> refine (optional)
          -> quality filter -> link parents/children -> link siblings

Linking runs after filtering so no chunk ever points at a rejected one.

Sizes come from the ``words * 1.33`` token estimate.  Any node larger than
its scale's ``max_tokens`` is split sentence-wise into greedily packed
groups that never exceed the maximum; a single sentence over the maximum is
cut into word windows.  Pieces that still fall below ``min_tokens`` are
dropped and counted.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from statistics import mean

import structlog

from src.config.pipeline_config import ChunkingConfig, ScaleBand
from src.models.chunk import Chunk, ChunkingStats, ChunkScale, ChunkTable
from src.models.document import Document, StructureNode
from src.services.chunking.boundary_refiner import SemanticBoundaryRefiner
from src.services.chunking.quality_validator import ChunkQualityValidator
from src.services.chunking.scoring import WordCache, parent_child_score
from src.services.chunking.structure_parser import StructureParser
from src.utils.text import TOKENS_PER_WORD, estimate_tokens, split_sentences, truncate

logger = structlog.get_logger(logger_name=__name__)

_LEAD_PHRASE_CHARS = 60
# Scores closer than this are treated as a tie.
_TIE_EPSILON = 1e-9


@dataclass
class ChunkingOutcome:
    """The linked chunk table for one document plus how it was produced."""

    table: ChunkTable
    stats: ChunkingStats


class HierarchicalChunker:
    """Splits a document into linked chunks at four scales.

    Parameters
    ----------
    config:
        Bands, refinement and quality settings for this run.
    parser:
        Structure parser; a default :class:`StructureParser` when omitted.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        parser: StructureParser | None = None,
    ) -> None:
        self._config = config or ChunkingConfig()
        self._parser = parser or StructureParser()
        self._refiner = SemanticBoundaryRefiner(
            threshold=self._config.boundary_threshold,
            min_chars=self._config.min_chunk_chars,
        )
        self._validator = ChunkQualityValidator(
            min_quality=self._config.min_quality,
            ideal_min_tokens=self._config.ideal_min_tokens,
            ideal_max_tokens=self._config.ideal_max_tokens,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, document: Document, structure: StructureNode | None = None) -> ChunkingOutcome:
        """Run the full chunking pipeline for *document*."""
        if not document.text.strip():
            return ChunkingOutcome(table=ChunkTable(), stats=ChunkingStats())

        structure = structure or self._parser.parse(document)

        self._position = 0
        self._dropped = 0
        raw = self._generate(document, structure)

        refined_count = 0
        if self._config.refine_boundaries:
            raw, refined_count = self._refine(raw)

        accepted, rejected = self._validator.validate(raw)
        table = ChunkTable(accepted)
        linked = self.link_parents(table)
        self.link_siblings(table)

        stats = self._stats(table, rejected=len(rejected), refined=refined_count, linked=linked)
        logger.debug(
            "chunking_complete",
            source_id=document.source_id,
            version=document.version,
            total=stats.total_chunks,
            by_scale=stats.chunks_by_scale,
            avg_tokens=round(stats.average_tokens, 1),
            dropped=stats.dropped_out_of_band,
            rejected=stats.quality_rejections,
        )
        return ChunkingOutcome(table=table, stats=stats)

    def link_parents(self, table: ChunkTable) -> int:
        """Assign each chunk its best-scoring parent one scale coarser.

        Ties go to the candidate with the lowest position, then the lowest
        chunk id, so the result does not depend on candidate order.
        Returns the number of links made.
        """
        cache = WordCache()
        window = self._config.proximity_window
        floor = self._config.parent_score_floor
        linked = 0

        for scale in (ChunkScale.SECTION, ChunkScale.PARAGRAPH, ChunkScale.SENTENCE):
            candidates = table.by_scale(scale.coarser)  # type: ignore[arg-type]
            if not candidates:
                continue
            for child in table.by_scale(scale):
                try:
                    best: tuple[float, int, str] | None = None
                    for parent in candidates:
                        score = parent_child_score(child, parent, window, cache)
                        if score <= floor:
                            continue
                        key = (score, parent.position, parent.chunk_id)
                        if best is None or self._better(key, best):
                            best = key
                    if best is not None:
                        table.link(child.chunk_id, best[2])
                        linked += 1
                except Exception as exc:  # noqa: BLE001
                    logger.warning("parent_link_failed", chunk_id=child.chunk_id, error=str(exc))
        return linked

    @staticmethod
    def link_siblings(table: ChunkTable) -> None:
        """Siblings: same scale and same top-level heading, excluding self."""
        groups: dict[tuple[ChunkScale, str], list[str]] = {}
        for chunk in table:
            groups.setdefault((chunk.scale, chunk.top_level_heading), []).append(chunk.chunk_id)
        for ids in groups.values():
            for chunk_id in ids:
                table.update(chunk_id, sibling_ids=[i for i in ids if i != chunk_id])

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _generate(self, document: Document, root: StructureNode) -> list[Chunk]:
        cfg = self._config
        chunks: list[Chunk] = []
        title = root.heading or document.title

        chunks += self._emit(document, ChunkScale.DOCUMENT, document.text.strip(), title, [title])

        for section in root.sections():
            chunks += self._emit(
                document,
                ChunkScale.SECTION,
                section.text,
                section.heading,
                [section.heading],
                start=section.start,
            )
            for group in self._paragraph_groups(section):
                lead = group[0]
                path = self._paragraph_path(section, lead)
                group_text = "\n\n".join(p.text for p in group)
                chunks += self._emit(
                    document, ChunkScale.PARAGRAPH, group_text, lead.heading, path, start=lead.start
                )

                if not cfg.enable_sentence_scale:
                    continue
                for para in group:
                    para_path = self._paragraph_path(section, para)
                    packed = self._pack(split_sentences(para.text), cfg.sentence)
                    for idx, text in enumerate(packed, start=1):
                        chunks += self._emit(
                            document,
                            ChunkScale.SENTENCE,
                            text,
                            para.heading,
                            [*para_path, f"Part {idx}"],
                            split=False,
                            start=para.start,
                        )
        return chunks

    def _emit(
        self,
        document: Document,
        scale: ChunkScale,
        text: str,
        heading: str,
        path: list[str],
        split: bool = True,
        start: int = 0,
    ) -> list[Chunk]:
        """Turn one node's text into band-checked chunks at *scale*."""
        band = self._config.band(scale)
        pieces = self._split_to_band(text, band) if split else [text]
        page = document.text.count("\f", 0, start) + 1
        out: list[Chunk] = []
        for idx, piece in enumerate(pieces, start=1):
            tokens = estimate_tokens(piece)
            if not piece.strip() or not band.contains(tokens):
                self._dropped += 1
                continue
            piece_path = path if len(pieces) == 1 else [*path, f"Part {idx}"]
            out.append(
                Chunk(
                    chunk_id=str(uuid.uuid4()),
                    source_id=document.source_id,
                    version=document.version,
                    scale=scale,
                    content=piece,
                    token_count=tokens,
                    heading=heading,
                    hierarchy_path=[p for p in piece_path if p],
                    position=self._position,
                    page=page,
                )
            )
            self._position += 1
        return out

    def _paragraph_groups(self, section: StructureNode) -> list[list[StructureNode]]:
        """Pack consecutive under-band paragraphs together so short
        paragraphs still reach the paragraph scale."""
        band = self._config.paragraph
        groups: list[list[StructureNode]] = []
        buffer: list[StructureNode] = []

        def tokens(nodes: list[StructureNode]) -> int:
            return estimate_tokens(" ".join(n.text for n in nodes))

        for para in section.paragraphs():
            if tokens([para]) >= band.min_tokens:
                if buffer:
                    if tokens([*buffer, para]) <= band.max_tokens:
                        groups.append([*buffer, para])
                        buffer = []
                        continue
                    groups.append(buffer)
                    buffer = []
                groups.append([para])
                continue
            buffer.append(para)
            if tokens(buffer) >= band.min_tokens:
                groups.append(buffer)
                buffer = []

        if buffer:
            if groups and tokens([*groups[-1], *buffer]) <= band.max_tokens:
                groups[-1] = [*groups[-1], *buffer]
            else:
                groups.append(buffer)
        return groups

    @staticmethod
    def _paragraph_path(section: StructureNode, para: StructureNode) -> list[str]:
        sentences = split_sentences(para.text)
        lead = truncate(sentences[0], _LEAD_PHRASE_CHARS) if sentences else "Paragraph"
        path = [section.heading]
        if para.heading and para.heading != section.heading:
            path.append(para.heading)
        path.append(lead)
        return path

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def _split_to_band(self, text: str, band: ScaleBand) -> list[str]:
        """Return *text* as-is if it fits under the band maximum, else packed pieces."""
        if estimate_tokens(text) <= band.max_tokens:
            return [text]
        return self._pack(split_sentences(text), band)

    @staticmethod
    def _pack(sentences: list[str], band: ScaleBand) -> list[str]:
        """Greedily pack sentences into groups not exceeding ``band.max_tokens``."""
        window = max(1, math.floor(band.max_tokens / TOKENS_PER_WORD))
        units: list[str] = []
        for sentence in sentences:
            if estimate_tokens(sentence) <= band.max_tokens:
                units.append(sentence)
                continue
            words = sentence.split()
            units.extend(" ".join(words[i:i + window]) for i in range(0, len(words), window))

        groups: list[str] = []
        current: list[str] = []
        current_tokens = 0
        for unit in units:
            unit_tokens = estimate_tokens(unit)
            if current and current_tokens + unit_tokens > band.max_tokens:
                groups.append(" ".join(current))
                current, current_tokens = [], 0
            current.append(unit)
            current_tokens += unit_tokens
        if current:
            groups.append(" ".join(current))
        return groups

    # ------------------------------------------------------------------
    # Refinement / stats
    # ------------------------------------------------------------------

    def _refine(self, chunks: list[Chunk]) -> tuple[list[Chunk], int]:
        out: list[Chunk] = []
        refined = 0
        for chunk in chunks:
            pieces = self._refiner.refine(chunk)
            if pieces and pieces[0] is not chunk:
                refined += len(pieces)
            out.extend(pieces)
        return out, refined

    @staticmethod
    def _better(candidate: tuple[float, int, str], best: tuple[float, int, str]) -> bool:
        if candidate[0] > best[0] + _TIE_EPSILON:
            return True
        if abs(candidate[0] - best[0]) <= _TIE_EPSILON:
            return (candidate[1], candidate[2]) < (best[1], best[2])
        return False

    def _stats(self, table: ChunkTable, rejected: int, refined: int, linked: int) -> ChunkingStats:
        chunks = table.to_list()
        by_scale = {scale.value: len(table.by_scale(scale)) for scale in ChunkScale}
        return ChunkingStats(
            chunks_by_scale=by_scale,
            total_chunks=len(chunks),
            average_tokens=mean(c.token_count for c in chunks) if chunks else 0.0,
            average_quality=mean(c.quality_score for c in chunks) if chunks else 0.0,
            dropped_out_of_band=self._dropped,
            quality_rejections=rejected,
            refined_chunks=refined,
            linked_parents=linked,
        )
