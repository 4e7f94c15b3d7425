"""Document and structure-tree models.

A :class:`Document` is pre-extracted plain text plus light metadata.  It is
immutable once ingested under a ``(source_id, version)`` pair; a new
version creates a new lineage rather than editing the old one.

:class:`StructureNode` is the parser's output tree.  It is an internal,
throwaway structure -- built once per document, consumed by the chunker and
never persisted -- so it is a mutable dataclass rather than a frozen
pydantic model.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class DocumentMetadata(BaseModel):
    """Structural metadata computed when a document is loaded."""

    model_config = ConfigDict(frozen=True)

    file_name: str = ""
    byte_size: int = Field(default=0, ge=0)
    page_count: int = Field(default=1, ge=0)
    character_count: int = Field(default=0, ge=0)
    word_count: int = Field(default=0, ge=0)
    content_hash: str = Field(default="", description="sha256 of the UTF-8 text.")


class Document(BaseModel):
    """A source document at a specific version."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    version: str
    title: str
    text: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    @classmethod
    def from_text(
        cls,
        source_id: str,
        version: str,
        text: str,
        title: str | None = None,
        file_name: str = "",
    ) -> Document:
        """Build a Document and compute its metadata.

        Pages are counted from form-feed characters (``\\f``), which is how
        upstream PDF-to-text extraction separates pages.
        """
        encoded = text.encode("utf-8")
        metadata = DocumentMetadata(
            file_name=file_name,
            byte_size=len(encoded),
            page_count=text.count("\f") + 1 if text else 0,
            character_count=len(text),
            word_count=len(text.split()),
            content_hash=hashlib.sha256(encoded).hexdigest(),
        )
        return cls(
            source_id=source_id,
            version=version,
            title=title or _derive_title(text, file_name, source_id),
            text=text,
            metadata=metadata,
        )


class DocumentSubmission(BaseModel):
    """A caller's request to ingest one document.

    Exactly one of ``path``, ``content`` (UTF-8 bytes) or ``text`` should be
    given.  ``advanced`` routes the job through boundary refinement.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    version: str = "1"
    title: str | None = None
    path: Path | None = None
    content: bytes | None = None
    text: str | None = None
    advanced: bool = False


def _derive_title(text: str, file_name: str, source_id: str) -> str:
    if file_name:
        return Path(file_name).stem.replace("_", " ").replace("-", " ").strip() or source_id
    for line in text.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if stripped:
            return stripped[:120]
    return source_id


# ---------------------------------------------------------------------------
# StructureNode -- parser output, never persisted.
# ---------------------------------------------------------------------------
@dataclass
class StructureNode:
    """One node of a document's structure tree.

    ``kind`` is ``"document"``, ``"section"`` or ``"paragraph"``.  ``level``
    is 0 for the document root, the heading level for sections (1 = top)
    and the parent section's level + 1 for paragraphs.  ``start``/``end``
    index into the original document text.
    """

    kind: str
    level: int
    heading: str = ""
    text: str = ""
    start: int = 0
    end: int = 0
    children: list[StructureNode] = field(default_factory=list)

    def sections(self) -> list[StructureNode]:
        return [c for c in self.children if c.kind == "section"]

    def paragraphs(self) -> list[StructureNode]:
        """All paragraph nodes beneath this node, in document order."""
        found: list[StructureNode] = []
        for child in self.children:
            if child.kind == "paragraph":
                found.append(child)
            else:
                found.extend(child.paragraphs())
        return found

    def walk(self):  # noqa: ANN201
        yield self
        for child in self.children:
            yield from child.walk()
