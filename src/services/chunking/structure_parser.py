"""Document structure parsing: raw text to a section/paragraph tree.

The parser works on blank-line separated blocks.  The first line of each
block is tested as a heading; a block whose first line is a heading opens a
new section (or subsection) and whatever follows that line in the block is
that section's first paragraph.

Heading detection, strongest signal first:

1. Markdown ``#``..``######`` -- level = number of hashes
2. Numbered (``1.``, ``2.3``, ``4)``) followed by a capitalised title -- level 2,
   or deeper for dotted numbers (``2.3`` -> 3)
3. ALL CAPS line with at least one letter -- level 1
4. A short line (under 100 characters, at most 12 words) that starts with
   a capital and does not end like a sentence -- level 3

The minimum heading level found in the document is treated as "top level":
those headings become section nodes, deeper headings become subsections
nested inside the current section.  Text before the first heading goes into
an implicit section named after the document title.
"""

from __future__ import annotations

import re

import structlog

from src.models.document import Document, StructureNode

logger = structlog.get_logger(logger_name=__name__)

_MARKDOWN_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_NUMBERED_HEADING = re.compile(r"^(\d+(?:\.\d+)*)[.)]?\s+([A-Z].*)$")
_BLOCK_RE = re.compile(r"\S(?:.*?)(?=\n\s*\n|\Z)", re.DOTALL)

_MAX_PLAIN_HEADING_CHARS = 100
_MAX_PLAIN_HEADING_WORDS = 12


def detect_heading(line: str) -> tuple[str, int] | None:
    """Return ``(heading_text, level)`` if *line* looks like a heading."""
    stripped = line.strip()
    if not stripped:
        return None

    md = _MARKDOWN_HEADING.match(stripped)
    if md:
        return md.group(2).strip(), len(md.group(1))

    numbered = _NUMBERED_HEADING.match(stripped)
    if numbered and len(stripped) < _MAX_PLAIN_HEADING_CHARS and not _ends_like_sentence(stripped):
        depth = numbered.group(1).count(".") + 2
        return stripped, min(depth, 6)

    letters = [ch for ch in stripped if ch.isalpha()]
    if len(letters) >= 2 and all(ch.isupper() for ch in letters) and len(stripped) < _MAX_PLAIN_HEADING_CHARS:
        return stripped, 1

    if (
        len(stripped) < _MAX_PLAIN_HEADING_CHARS
        and len(stripped.split()) <= _MAX_PLAIN_HEADING_WORDS
        and stripped[0].isupper()
        and not _ends_like_sentence(stripped)
    ):
        return stripped, 3

    return None


def _ends_like_sentence(text: str) -> bool:
    return text[-1] in ".!?,;:\"'"


class StructureParser:
    """Builds a :class:`StructureNode` tree from a document's plain text."""

    def parse(self, document: Document) -> StructureNode:
        text = document.text
        root = StructureNode(kind="document", level=0, heading=document.title, text=text, start=0, end=len(text))

        blocks = self._blocks(text)
        headed = [(start, end, body, detect_heading(body.splitlines()[0])) for start, end, body in blocks]
        # A lone single-block document is body text, not a heading.
        if len(headed) == 1 and headed[0][3] is not None and len(headed[0][2].splitlines()) == 1:
            headed = [(headed[0][0], headed[0][1], headed[0][2], None)]

        heading_levels = [h[1] for *_, h in headed if h is not None]
        top_level = min(heading_levels) if heading_levels else 1

        # A single top-level heading in the first block is the document
        # title ("# Guide" above "## Setup", "## Usage"), not a section.
        if (
            headed
            and headed[0][3] is not None
            and heading_levels.count(top_level) == 1
            and headed[0][3][1] == top_level
            and len(heading_levels) > 1
        ):
            start, end, body, (title, _) = headed[0]
            if document.title in ("", document.source_id):
                root.heading = title
            headed[0] = (start, end, body, ("", -1))
            top_level = min(heading_levels[1:])

        current_section: StructureNode | None = None
        current_sub: StructureNode | None = None

        for start, end, body, heading in headed:
            if heading is not None and heading[1] < 0:
                first_line_end = start + len(body.splitlines()[0])
                remainder = text[first_line_end:end]
                if remainder.strip():
                    offset = first_line_end + (len(remainder) - len(remainder.lstrip()))
                    current_section = StructureNode(
                        kind="section", level=1, heading=root.heading, start=offset, end=end
                    )
                    root.children.append(current_section)
                    self._attach_paragraph(current_section, remainder.strip(), offset)
                continue

            if heading is not None:
                title, level = heading
                first_line_end = start + len(body.splitlines()[0])
                if level <= top_level or current_section is None:
                    current_section = StructureNode(
                        kind="section", level=1, heading=title, start=start, end=end
                    )
                    root.children.append(current_section)
                    current_sub = None
                else:
                    current_sub = StructureNode(
                        kind="section",
                        level=min(level - top_level + 1, 6),
                        heading=title,
                        start=start,
                        end=end,
                    )
                    current_section.children.append(current_sub)
                remainder = text[first_line_end:end]
                if remainder.strip():
                    offset = first_line_end + (len(remainder) - len(remainder.lstrip()))
                    self._attach_paragraph(current_sub or current_section, remainder.strip(), offset)
                continue

            if current_section is None:
                current_section = StructureNode(
                    kind="section", level=1, heading=root.heading, start=start, end=end
                )
                root.children.append(current_section)
            self._attach_paragraph(current_sub or current_section, body, start)

        # Close section spans and materialise section text from the source.
        for idx, section in enumerate(root.children):
            nxt = root.children[idx + 1].start if idx + 1 < len(root.children) else len(text)
            section.end = nxt
            section.text = text[section.start:section.end].strip()
            for sub_idx, sub in enumerate(section.children):
                if sub.kind != "section":
                    continue
                later = [c for c in section.children[sub_idx + 1:] if c.kind == "section"]
                sub.end = later[0].start if later else section.end
                sub.text = text[sub.start:sub.end].strip()

        logger.debug(
            "structure_parsed",
            source_id=document.source_id,
            sections=len(root.sections()),
            paragraphs=len(root.paragraphs()),
            headings=len(heading_levels),
        )
        return root

    @staticmethod
    def _attach_paragraph(parent: StructureNode, body: str, start: int) -> None:
        parent.children.append(
            StructureNode(
                kind="paragraph",
                level=parent.level + 1,
                heading=parent.heading,
                text=body,
                start=start,
                end=start + len(body),
            )
        )

    @staticmethod
    def _blocks(text: str) -> list[tuple[int, int, str]]:
        """Blank-line separated blocks as ``(start, end, stripped_text)``."""
        blocks: list[tuple[int, int, str]] = []
        for match in _BLOCK_RE.finditer(text):
            body = match.group(0).rstrip()
            if body:
                blocks.append((match.start(), match.start() + len(body), body))
        return blocks
