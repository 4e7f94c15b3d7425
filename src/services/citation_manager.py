"""Citation extraction, validation and formatting.

Answers cite the retrieved chunks in one of five marker styles:

    inline     (Source, p.12)
    detailed   (Source: Guide, Page: 25, Section: NAV)
    academic   [Source, p.30]
    numbered   [1]            -> the first retrieved source
    footnote   ^1             -> the first retrieved source

A citation is valid when (a) a retrieved chunk with a matching source
name exists (normalised equality, whole-word containment, or a rapidfuzz ratio of
at least 0.85), with an equal page whenever both sides carry one, and (b)
the claim just before the marker shares at least one keyword with that
chunk's content.  An empty claim passes (b).

Formatting covers the five marker styles plus APA and MLA, a bibliography
with compressed page ranges ("3-5, 9"), coverage (share of sentences
carrying a valid citation), format-consistency analysis and statistics.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping, Sequence

import structlog
from rapidfuzz import fuzz

from src.config.pipeline_config import CitationConfig
from src.models.chunk import Chunk
from src.models.citation import (
    BibliographyEntry,
    Citation,
    CitationConsistency,
    CitationFormat,
    CitationReport,
    CitationStatistics,
)
from src.utils.text import STOPWORDS, words

logger = structlog.get_logger(logger_name=__name__)

# Order matters: at equal positions the earlier pattern wins.
CITATION_PATTERNS: list[tuple[CitationFormat, re.Pattern[str]]] = [
    (
        CitationFormat.DETAILED,
        re.compile(
            r"\(Source:\s*(?P<source>[^,()]+?),\s*Page:\s*(?P<page>\d+)"
            r"(?:,\s*Section:\s*(?P<section>[^)]+?))?\s*\)",
            re.I,
        ),
    ),
    (CitationFormat.INLINE, re.compile(r"\((?P<source>[^,()\[\]]+?),\s*p\.\s*(?P<page>\d+)\)", re.I)),
    (CitationFormat.ACADEMIC, re.compile(r"\[(?P<source>[^,\[\]]+?),\s*p\.\s*(?P<page>\d+)\]", re.I)),
    (CitationFormat.NUMBERED, re.compile(r"\[(?P<number>\d+)\]")),
    (CitationFormat.FOOTNOTE, re.compile(r"\^(?P<number>\d+)")),
]

_EXTENSION_RE = re.compile(r"\.(?:pdf|docx?|txt|md)$", re.I)
_PUNCT_RE = re.compile(r"[^\w\s]")
_SENTENCE_RE = re.compile(r"[.!?]+")
_POSITIONAL = (CitationFormat.NUMBERED, CitationFormat.FOOTNOTE)


def normalize_source_name(name: str | None) -> str:
    """Display form of a source name: no extension, no ``_``/``-``, title case."""
    if not name or not name.strip():
        return "Unknown Source"
    cleaned = _EXTENSION_RE.sub("", name.strip())
    cleaned = " ".join(re.sub(r"[_-]", " ", cleaned).split())
    return re.sub(r"\b\w+", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), cleaned)


def _match_key(name: str) -> str:
    return " ".join(_PUNCT_RE.sub(" ", _EXTENSION_RE.sub("", name).replace("_", " ")).lower().split())


def format_page_range(pages: Sequence[int]) -> str:
    """Compress sorted pages into ranges: ``[3, 4, 5, 9] -> "3-5, 9"``."""
    if not pages:
        return ""
    ordered = sorted(set(pages))
    ranges: list[str] = []
    start = end = ordered[0]
    for page in ordered[1:]:
        if page == end + 1:
            end = page
            continue
        ranges.append(str(start) if start == end else f"{start}-{end}")
        start = end = page
    ranges.append(str(start) if start == end else f"{start}-{end}")
    return ", ".join(ranges)


class CitationManager:
    """Extracts and validates citations against retrieved chunks.

    Parameters
    ----------
    config:
        Fuzzy source-name threshold and claim window.
    """

    def __init__(self, config: CitationConfig | None = None) -> None:
        self._config = config or CitationConfig()

    # ------------------------------------------------------------------
    # Extraction / validation
    # ------------------------------------------------------------------

    def extract(self, text: str) -> list[Citation]:
        """All citation markers in *text*, in order, one per position."""
        found: dict[int, Citation] = {}
        for fmt, pattern in CITATION_PATTERNS:
            for match in pattern.finditer(text):
                if match.start() in found:
                    continue
                groups = match.groupdict()
                found[match.start()] = Citation(
                    raw_text=match.group(0),
                    format=fmt,
                    position=match.start(),
                    source=normalize_source_name(groups["source"]) if groups.get("source") else None,
                    page=int(groups["page"]) if groups.get("page") else None,
                    section=(groups.get("section") or "").strip() or None,
                    number=int(groups["number"]) if groups.get("number") else None,
                )
        return [found[pos] for pos in sorted(found)]

    def validate(
        self,
        text: str,
        sources: Sequence[Chunk],
        titles: Mapping[str, str] | None = None,
    ) -> CitationReport:
        """Extract and validate the citations of an answer.

        Parameters
        ----------
        text:
            The generated answer.
        sources:
            Retrieved chunks in the order they were shown to the generator;
            numbered and footnote markers index into this list.
        titles:
            Optional ``source_id -> document title`` map so citations may
            name a document by title instead of id.
        """
        citations = self.extract(text)
        if not citations:
            return CitationReport(not_applicable=True)

        titles = titles or {}
        validated = [self._validate_one(c, text, sources, titles) for c in citations]
        valid = [c for c in validated if c.is_valid]
        report = CitationReport(
            citations=validated,
            quality_score=len(valid) / len(validated),
            coverage=self.coverage(text, valid),
        )
        logger.debug(
            "citations_validated",
            total=report.total,
            valid=len(valid),
            coverage=round(report.coverage, 3),
        )
        return report

    def source_matches(self, cited: str, available: str) -> bool:
        """Whether a cited source name refers to *available*.

        Names match on equal keys, when one name's words are a subset of
        the other's, or on a fuzzy ratio at or above the threshold.  Words
        are compared whole, so "Art" never matches "smart-contracts".
        """
        a, b = _match_key(cited), _match_key(available)
        if not a or not b:
            return False
        if a == b:
            return True
        a_words, b_words = set(a.split()), set(b.split())
        if a_words <= b_words or b_words <= a_words:
            return True
        return fuzz.ratio(a, b) / 100.0 >= self._config.fuzzy_threshold

    def coverage(self, text: str, valid: Sequence[Citation]) -> float:
        """Share of sentences (over 10 characters) that carry a valid citation."""
        if not valid:
            return 0.0
        # Markers such as "p.12" contain periods; mask them before splitting.
        valid_positions = {c.position for c in valid}
        masked: list[str] = []
        last = 0
        for citation in self.extract(text):
            masked.append(text[last : citation.position])
            masked.append(" \x00cite\x00 " if citation.position in valid_positions else " ")
            last = citation.position + len(citation.raw_text)
        masked.append(text[last:])

        sentences = [s for s in _SENTENCE_RE.split("".join(masked)) if len(s.strip()) > 10]
        if not sentences:
            return 0.0
        cited = sum(1 for s in sentences if "\x00cite\x00" in s)
        return min(cited / len(sentences), 1.0)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    @staticmethod
    def format_citation(
        citation: Citation,
        fmt: CitationFormat,
        number: int = 1,
        include_section: bool = False,
    ) -> str:
        source = citation.source or "Unknown Source"
        page = citation.page if citation.page is not None else "N/A"
        section = citation.section or ""

        if fmt == CitationFormat.INLINE:
            if section and include_section:
                return f"({source}, p.{page}, {section})"
            return f"({source}, p.{page})"
        if fmt == CitationFormat.DETAILED:
            parts = [f"Source: {source}", f"Page: {page}"]
            if section:
                parts.append(f"Section: {section}")
            return f"({', '.join(parts)})"
        if fmt == CitationFormat.ACADEMIC:
            return f"[{source}, p.{page}]"
        if fmt == CitationFormat.NUMBERED:
            return f"[{number}]"
        if fmt == CitationFormat.FOOTNOTE:
            return f"^{number}"
        if fmt == CitationFormat.APA:
            return f"({source}, p. {page})"
        return f"({source} {page})"

    def format_all(
        self,
        citations: Sequence[Citation],
        fmt: CitationFormat = CitationFormat.INLINE,
        include_section: bool = False,
    ) -> list[str]:
        return [
            self.format_citation(c, fmt, idx, include_section)
            for idx, c in enumerate(citations, start=1)
        ]

    @staticmethod
    def bibliography(citations: Sequence[Citation], detailed: bool = False) -> list[BibliographyEntry]:
        """One entry per distinct source, sorted by source name."""
        groups: dict[str, list[Citation]] = {}
        for citation in citations:
            groups.setdefault(citation.source or "Unknown Source", []).append(citation)

        entries: list[BibliographyEntry] = []
        for source, members in groups.items():
            pages = sorted({c.page for c in members if c.page is not None})
            sections = list(dict.fromkeys(c.section for c in members if c.section))
            if detailed:
                lines = [source]
                if pages:
                    lines.append(f"  Pages referenced: {format_page_range(pages)}")
                if sections:
                    lines.append(f"  Sections: {', '.join(sections)}")
                lines.append(f"  Citations: {len(members)}")
                formatted = "\n".join(lines)
            else:
                formatted = source
                if pages:
                    formatted += f", pages {format_page_range(pages)}"
                if sections:
                    formatted += f", sections: {', '.join(sections)}"
            entries.append(
                BibliographyEntry(
                    source=source,
                    formatted=formatted,
                    pages=pages,
                    sections=sections,
                    citation_count=len(members),
                )
            )
        return sorted(entries, key=lambda e: e.source.lower())

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def consistency(self, text: str) -> CitationConsistency:
        counts = Counter(c.format for c in self.extract(text))
        total = sum(counts.values())
        if not counts:
            return CitationConsistency()
        fmt, top = counts.most_common(1)[0]
        issues = ["Multiple citation formats detected"] if len(counts) > 1 else []
        return CitationConsistency(
            formats={f.value: n for f, n in counts.items()},
            total=total,
            score=top / total,
            recommended_format=fmt,
            issues=issues,
        )

    @staticmethod
    def statistics(citations: Sequence[Citation]) -> CitationStatistics:
        if not citations:
            return CitationStatistics()
        valid = sum(1 for c in citations if c.is_valid)
        return CitationStatistics(
            total=len(citations),
            valid=valid,
            invalid=len(citations) - valid,
            with_source=sum(1 for c in citations if c.source),
            with_page=sum(1 for c in citations if c.page is not None),
            with_section=sum(1 for c in citations if c.section),
            formats=dict(Counter(c.format.value for c in citations)),
            sources=dict(Counter(c.source for c in citations if c.source)),
            average_relevance=sum(c.relevance for c in citations) / len(citations),
            quality_score=valid / len(citations),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_one(
        self,
        citation: Citation,
        text: str,
        sources: Sequence[Chunk],
        titles: Mapping[str, str],
    ) -> Citation:
        claim = self._claim_keywords(text, citation.position)

        if citation.format in _POSITIONAL:
            idx = (citation.number or 0) - 1
            if not 0 <= idx < len(sources):
                return citation.model_copy(update={"issues": ["Citation number out of range"]})
            candidates = [sources[idx]]
        else:
            if not citation.source:
                return citation.model_copy(update={"issues": ["Insufficient citation information"]})
            candidates = [
                chunk
                for chunk in sources
                if self._names_match(citation.source, chunk, titles)
                and (citation.page is None or chunk.page is None or chunk.page == citation.page)
            ]
            if not candidates:
                return citation.model_copy(update={"issues": ["No matching source found"]})

        best: tuple[float, Chunk] | None = None
        for chunk in candidates:
            relevance = self._claim_support(claim, chunk)
            if relevance is not None and (best is None or relevance > best[0]):
                best = (relevance, chunk)
        if best is None:
            return citation.model_copy(update={"issues": ["Claim not supported by cited source"]})

        relevance, chunk = best
        return citation.model_copy(
            update={
                "is_valid": True,
                "relevance": relevance,
                "matched_chunk_id": chunk.chunk_id,
                "source": citation.source
                or normalize_source_name(titles.get(chunk.source_id, chunk.source_id)),
                "page": citation.page if citation.page is not None else chunk.page,
                "section": citation.section or chunk.heading or None,
            }
        )

    def _names_match(self, cited: str, chunk: Chunk, titles: Mapping[str, str]) -> bool:
        names = [chunk.source_id]
        if chunk.source_id in titles:
            names.append(titles[chunk.source_id])
        return any(self.source_matches(cited, name) for name in names)

    def _claim_keywords(self, text: str, position: int) -> set[str]:
        window = text[max(0, position - self._config.claim_window) : position]
        # Earlier markers in the window belong to earlier claims.
        for _, pattern in CITATION_PATTERNS:
            window = pattern.sub(" ", window)
        return {w for w in words(window, min_length=3) if w not in STOPWORDS}

    @staticmethod
    def _claim_support(claim: set[str], chunk: Chunk) -> float | None:
        """Keyword overlap of the claim with the chunk; ``None`` when unsupported."""
        if not claim:
            return 1.0
        overlap = claim & set(words(chunk.content, min_length=3))
        if not overlap:
            return None
        return len(overlap) / len(claim)
