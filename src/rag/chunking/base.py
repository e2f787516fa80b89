"""Chunk type and chunking strategy interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.rag.models import EducationalContext
    from src.rag.structure import DocumentStructure


@dataclass
class Chunk:
    """A document chunk ready for embedding.

    Offsets index the analysed document text. ``overlap_chars`` is the length
    of the leading text repeated from the previous chunk.
    """

    index: int
    text: str
    start_char: int
    end_char: int
    metadata: dict
    id: str = ""
    char_count: int = 0
    word_count: int = 0
    sentence_count: int = 0
    overlap_chars: int = 0
    section_title: str | None = None
    page_number: int | None = None
    paragraph_number: int | None = None
    is_heading: bool = False
    is_list: bool = False
    previous_chunk_id: str | None = None
    next_chunk_id: str | None = None
    relative_position: float = 0.0

    def __post_init__(self):
        if not self.id:
            self.id = f"chunk_{self.index}"
        if not self.char_count:
            self.char_count = len(self.text)
        if not self.word_count:
            self.word_count = len(self.text.split())


class ChunkingStrategy(ABC):
    """Base class for chunking strategies."""

    @abstractmethod
    def chunk(
        self,
        text: str,
        structure: "DocumentStructure | None" = None,
        context: "EducationalContext | None" = None,
        metadata: dict | None = None,
    ) -> list[Chunk]:
        """Split text into chunks."""
