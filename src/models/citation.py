"""Citation models.

Citations are derived from a generated answer and the retrieval result it
was grounded on.  They are never persisted on their own -- they live and
die with the response that produced them.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CitationFormat(str, Enum):  # noqa: UP042
    INLINE = "inline"        # (Source, p.12)
    DETAILED = "detailed"    # (Source: Guide, Page: 25, Section: NAV)
    ACADEMIC = "academic"    # [Source, p.30]
    NUMBERED = "numbered"    # [1]
    FOOTNOTE = "footnote"    # ^1
    APA = "apa"              # (Source, p. 12)
    MLA = "mla"              # (Source 12)


class Citation(BaseModel):
    """One citation marker found in (or produced for) an answer."""

    model_config = ConfigDict(frozen=True)

    raw_text: str = ""
    format: CitationFormat
    position: int = Field(default=0, ge=0, description="Character offset in the answer.")
    source: str | None = None
    page: int | None = None
    section: str | None = None
    number: int | None = Field(default=None, description="Index for numbered/footnote markers.")
    is_valid: bool = False
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_chunk_id: str | None = None
    issues: list[str] = Field(default_factory=list)


class BibliographyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    formatted: str
    pages: list[int] = Field(default_factory=list)
    sections: list[str] = Field(default_factory=list)
    citation_count: int = 0


class CitationReport(BaseModel):
    """Extraction + validation outcome for one answer."""

    model_config = ConfigDict(frozen=True)

    citations: list[Citation] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    not_applicable: bool = Field(
        default=False, description="True when the answer carries no citations at all."
    )

    @property
    def valid(self) -> list[Citation]:
        return [c for c in self.citations if c.is_valid]

    @property
    def total(self) -> int:
        return len(self.citations)

    @property
    def invalid(self) -> list[Citation]:
        return [c for c in self.citations if not c.is_valid]


class CitationConsistency(BaseModel):
    """How uniformly an answer uses one citation format."""

    model_config = ConfigDict(frozen=True)

    formats: dict[str, int] = Field(default_factory=dict)
    total: int = 0
    score: float = Field(default=1.0, ge=0.0, le=1.0)
    recommended_format: CitationFormat | None = None
    issues: list[str] = Field(default_factory=list)


class CitationStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    valid: int = 0
    invalid: int = 0
    with_source: int = 0
    with_page: int = 0
    with_section: int = 0
    formats: dict[str, int] = Field(default_factory=dict)
    sources: dict[str, int] = Field(default_factory=dict)
    average_relevance: float = 0.0
    quality_score: float = 0.0
