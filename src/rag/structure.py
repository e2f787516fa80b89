"""Structural analysis of extracted document text.

Detects pages, paragraphs, headings, lists and tables, and scores text
quality. All offsets index into the analysed text. Attribution is
best-effort: the heuristics work on plain text with no layout information.
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from src.rag.models import QualityAssessment

logger = logging.getLogger(__name__)

# Runs of two or more blank lines separate pages, one or more separate blocks
_PAGE_SEP = re.compile(r"\n[ \t]*\n[ \t]*\n\s*")
_BLOCK_SEP = re.compile(r"\n[ \t]*\n\s*")

_NUMBERED_PREFIX = re.compile(r"^(\d+(?:\.\d+)*)\.?\s+")
_EXPLICIT_HEADING = re.compile(
    r"^(?:(?:[Cc]hapter|CHAPTER|[Cc]ap[ií]tulo|CAP[IÍ]TULO|[Tt]ema|TEMA|[Uu]nidad|UNIDAD"
    r"|[Uu]nit|UNIT|[Ss]ection|SECTION|[Ss]ecci[oó]n|SECCI[OÓ]N)\s+[\dIVXLC]+"
    r"|\d+(?:\.\d+)*\.?\s+[A-ZÁÉÍÓÚÑ])"
)
_ALL_CAPS_LINE = re.compile(r"^[A-ZÁÉÍÓÚÑÜ0-9][A-ZÁÉÍÓÚÑÜ0-9 ,:;\-]{9,49}$")
_SENTENCE_END = (".", "!", "?", "…")

_LIST_PATTERNS = {
    "bullet": re.compile(r"^\s*[•\-\*▪◦·]\s+"),
    "numbered": re.compile(r"^\s*\d+[.)]\s+"),
    "lettered": re.compile(r"^\s*[a-z]\)\s+"),
    "roman": re.compile(r"^\s*[ivxlcdm]+\.\s+"),
}

_TABLE_SEP = re.compile(r" {3,}|\t|\|")

_SPECIAL_CHARS = re.compile(r"[^\w\s.,;:!?¿¡()\[\]\"'«»\-–/%]")
_READABLE_RUN = re.compile(r"[^\W\d_]{3,}")

_URL = re.compile(r"https?://[^\s<>\"')]+")
_EMAIL = re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)+\b")
_DATE = re.compile(r"\b(?:\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2})\b")
_EQUATION = re.compile(r"[\w)\]]\s*(?:=|≤|≥|≠|≈)\s*[\w(\[√∑-]")
_TOC = re.compile(r"\b(?:table of contents|contents|[ií]ndice|contenidos?)\b", re.IGNORECASE)
_REFERENCES = re.compile(
    r"^\s*(?:references|bibliography|bibliograf[ií]a|referencias)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_INDEX = re.compile(r"^\s*(?:index|[ií]ndice alfab[eé]tico)\s*$", re.IGNORECASE | re.MULTILINE)


@dataclass
class Page:
    """A page span in the analysed text."""

    number: int
    start: int
    end: int
    char_count: int
    word_count: int


@dataclass
class Block:
    """A blank-line separated block of text."""

    start: int
    end: int
    text: str


@dataclass
class Paragraph:
    """A block long enough to count as a paragraph."""

    number: int
    start: int
    end: int
    text: str


@dataclass
class Heading:
    """A heading candidate with heuristic level and kind."""

    text: str
    level: int
    kind: str  # chapter | unit | section
    start: int
    end: int


@dataclass
class ListBlock:
    """A run of list items terminated by a blank line."""

    list_type: str  # bullet | numbered | lettered | roman
    items: list[str]
    start: int
    end: int


@dataclass
class Table:
    """A run of consecutive delimited lines."""

    rows: int
    column_count: int
    sample_rows: list[str]
    start: int
    end: int


@dataclass
class DocumentElements:
    """Inline elements and special sections found in the text."""

    urls: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    dates: list[str] = field(default_factory=list)
    equations: list[str] = field(default_factory=list)
    has_table_of_contents: bool = False
    has_references: bool = False
    has_index: bool = False


@dataclass
class DocumentStructure:
    """Result of structure analysis."""

    text_length: int
    pages: list[Page]
    blocks: list[Block]
    paragraphs: list[Paragraph]
    headings: list[Heading]
    lists: list[ListBlock]
    tables: list[Table]
    quality: QualityAssessment
    elements: DocumentElements

    def summary(self) -> dict[str, Any]:
        """Counts suitable for logging and stats."""
        return {
            "pages": len(self.pages),
            "paragraphs": len(self.paragraphs),
            "headings": len(self.headings),
            "lists": len(self.lists),
            "tables": len(self.tables),
            "quality": self.quality.score,
            "has_table_of_contents": self.elements.has_table_of_contents,
            "has_references": self.elements.has_references,
        }


def _spans(text: str, separator: re.Pattern[str]) -> Iterator[tuple[int, int]]:
    """Yield (start, end) of non-blank segments between separator matches."""
    pos = 0
    for match in separator.finditer(text):
        yield from _trimmed(text, pos, match.start())
        pos = match.end()
    yield from _trimmed(text, pos, len(text))


def _trimmed(text: str, start: int, end: int) -> Iterator[tuple[int, int]]:
    segment = text[start:end]
    stripped = segment.strip()
    if stripped:
        lead = len(segment) - len(segment.lstrip())
        yield start + lead, start + lead + len(stripped)


def _lines(text: str) -> Iterator[tuple[int, int, str]]:
    """Yield (start, end, line) for every line, end excluding the newline."""
    pos = 0
    for line in text.split("\n"):
        yield pos, pos + len(line), line
        pos += len(line) + 1


class StructureAnalyzer:
    """Heuristic structure detection over plain text.

    Pure and deterministic: the same text and page count always produce
    the same structure.
    """

    def __init__(self, min_paragraph_length: int = 50):
        self.min_paragraph_length = min_paragraph_length

    def analyze(
        self,
        text: str,
        page_count: int = 1,
        page_spans: list[tuple[int, int]] | None = None,
    ) -> DocumentStructure:
        """Analyse text structure.

        Args:
            text: Extracted document text
            page_count: Page count reported by the extractor
            page_spans: Per-page (start, end) offsets reported by the extractor

        Returns:
            DocumentStructure with offsets into ``text``
        """
        blocks = [Block(s, e, text[s:e]) for s, e in _spans(text, _BLOCK_SEP)]
        paragraphs = [
            Paragraph(number=0, start=b.start, end=b.end, text=b.text)
            for b in blocks
            if len(b.text) >= self.min_paragraph_length
        ]
        for number, paragraph in enumerate(paragraphs, 1):
            paragraph.number = number

        structure = DocumentStructure(
            text_length=len(text),
            pages=self.detect_pages(text, page_count, page_spans),
            blocks=blocks,
            paragraphs=paragraphs,
            headings=self.detect_headings(text, blocks),
            lists=self.detect_lists(text),
            tables=self.detect_tables(text),
            quality=self.assess_quality(text),
            elements=self.detect_elements(text),
        )
        logger.debug(f"[Structure] {structure.summary()}")
        return structure

    def detect_pages(
        self, text: str, page_count: int, page_spans: list[tuple[int, int]] | None = None
    ) -> list[Page]:
        """Use the extractor's page spans when given, otherwise split on page
        separators, falling back to equal-length windows."""
        page_count = max(page_count, 1)
        spans = list(page_spans) if page_spans else list(_spans(text, _PAGE_SEP))

        if not page_spans and len(spans) < page_count:
            window = len(text) // page_count
            spans = [
                (i * window, len(text) if i == page_count - 1 else (i + 1) * window)
                for i in range(page_count)
            ]

        return [
            Page(
                number=number,
                start=start,
                end=end,
                char_count=end - start,
                word_count=len(text[start:end].split()),
            )
            for number, (start, end) in enumerate(spans, 1)
        ]

    def detect_headings(self, text: str, blocks: list[Block]) -> list[Heading]:
        """Find heading candidates.

        A whole block qualifies when it is short and does not end like a
        sentence. Inside longer blocks, single lines qualify only when they
        match an explicit chapter/numbered/all-caps pattern.
        """
        headings: list[Heading] = []
        for block in blocks:
            if self._is_heading_text(block.text):
                headings.append(self._heading(block.text, block.start, block.end))
                continue

            block_lines = list(_lines(block.text))
            if sum(1 for _, _, line in block_lines if self._list_type(line)) >= 2:
                continue

            for start, _end, line in block_lines:
                candidate = line.strip()
                if not self._is_heading_text(candidate):
                    continue
                if _EXPLICIT_HEADING.match(candidate) or _ALL_CAPS_LINE.match(candidate):
                    lead = len(line) - len(line.lstrip())
                    abs_start = block.start + start + lead
                    headings.append(
                        self._heading(candidate, abs_start, abs_start + len(candidate))
                    )
        return headings

    @staticmethod
    def _is_heading_text(candidate: str) -> bool:
        return (
            5 < len(candidate) < 100
            and "\n" not in candidate
            and not candidate.endswith(_SENTENCE_END)
        )

    @staticmethod
    def _heading(candidate: str, start: int, end: int) -> Heading:
        match = _NUMBERED_PREFIX.match(candidate)
        level = len(match.group(1).split(".")) if match else 1

        lowered = candidate.lower()
        if lowered.startswith(("chapter", "capítulo", "capitulo")):
            kind = "chapter"
        elif lowered.startswith(("unit", "unidad", "tema")):
            kind = "unit"
        else:
            kind = "section"

        return Heading(text=candidate, level=level, kind=kind, start=start, end=end)

    def detect_lists(self, text: str) -> list[ListBlock]:
        """Find runs of at least two list items ended by a blank line."""
        lists: list[ListBlock] = []
        current: ListBlock | None = None

        def flush() -> None:
            if current and len(current.items) >= 2:
                lists.append(current)

        for start, end, line in _lines(text):
            if not line.strip():
                flush()
                current = None
                continue

            list_type = self._list_type(line)
            if list_type:
                item = line.strip()
                if current is None:
                    current = ListBlock(list_type=list_type, items=[item], start=start, end=end)
                else:
                    current.items.append(item)
                    current.end = end
            elif current is not None:
                # Continuation of the previous item
                current.items[-1] = f"{current.items[-1]} {line.strip()}"
                current.end = end

        flush()
        return lists

    @staticmethod
    def _list_type(line: str) -> str | None:
        for list_type, pattern in _LIST_PATTERNS.items():
            if pattern.match(line):
                return list_type
        return None

    def detect_tables(self, text: str) -> list[Table]:
        """Find runs of two or more consecutive delimited lines."""
        tables: list[Table] = []
        run: list[tuple[int, int, str]] = []

        def flush() -> None:
            if len(run) >= 2:
                rows = [line.strip() for _, _, line in run]
                columns = max(len([c for c in _TABLE_SEP.split(r) if c.strip()]) for r in rows)
                tables.append(
                    Table(
                        rows=len(rows),
                        column_count=columns,
                        sample_rows=rows[:3],
                        start=run[0][0],
                        end=run[-1][1],
                    )
                )

        for start, end, line in _lines(text):
            if len(line.strip()) > 20 and len(_TABLE_SEP.findall(line.strip())) >= 2:
                run.append((start, end, line))
            else:
                flush()
                run = []
        flush()
        return tables

    @staticmethod
    def assess_quality(text: str) -> QualityAssessment:
        """Score text quality as poor, fair, good or excellent."""
        stripped = text.strip()
        length = max(len(text), 1)
        special_ratio = len(_SPECIAL_CHARS.findall(text)) / length
        whitespace_ratio = sum(1 for c in text if c.isspace()) / length
        has_readable = bool(_READABLE_RUN.search(text))

        metrics = {
            "has_content": len(stripped) > 100,
            "has_readable_text": has_readable,
            "special_char_ratio": round(special_ratio, 4),
            "whitespace_ratio": round(whitespace_ratio, 4),
        }

        issues = []
        if len(stripped) <= 100:
            issues.append("Text is too short or empty")
        if not has_readable:
            issues.append("No readable text found")
        if issues:
            return QualityAssessment(score="poor", issues=issues, metrics=metrics)

        if special_ratio > 0.10:
            issues.append("High ratio of special characters")
        if whitespace_ratio > 0.50:
            issues.append("Excessive whitespace")
        if issues:
            return QualityAssessment(score="fair", issues=issues, metrics=metrics)

        score = "excellent" if special_ratio <= 0.05 and whitespace_ratio <= 0.25 else "good"
        return QualityAssessment(score=score, issues=[], metrics=metrics)

    @staticmethod
    def detect_elements(text: str) -> DocumentElements:
        equations = [
            line.strip()
            for _, _, line in _lines(text)
            if _EQUATION.search(line) and len(line.strip()) < 120
        ]
        return DocumentElements(
            urls=_URL.findall(text),
            emails=_EMAIL.findall(text),
            dates=_DATE.findall(text),
            equations=equations[:50],
            has_table_of_contents=bool(_TOC.search(text[: max(len(text) // 5, 2000)])),
            has_references=bool(_REFERENCES.search(text)),
            has_index=bool(_INDEX.search(text)),
        )
