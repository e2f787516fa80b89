"""Sentence-packing semantic chunker.

Packs whole sentences into chunks bounded by character size, sentence count
and paragraph boundaries, carrying a short sentence overlap from each chunk
into the next. Chunks are then enriched with structural attribution.
"""

import bisect
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from src.rag.chunking.base import Chunk, ChunkingStrategy
from src.rag.chunking.sentences import Sentence, segment_sentences, split_head, split_sentence
from src.rag.models import EducationalContext
from src.rag.structure import DocumentStructure, StructureAnalyzer

logger = logging.getLogger(__name__)


def _joined_len(sentences: list[Sentence]) -> int:
    if not sentences:
        return 0
    return sum(len(s.text) for s in sentences) + len(sentences) - 1


@dataclass
class _Draft:
    """A chunk under construction: its sentences and how many lead with overlap."""

    sentences: list[Sentence]
    overlap_count: int = 0
    overlap_chars: int = field(init=False)

    def __post_init__(self):
        self.overlap_chars = _joined_len(self.sentences[: self.overlap_count])

    @property
    def length(self) -> int:
        return _joined_len(self.sentences)


class SemanticChunker(ChunkingStrategy):
    """Greedy sentence packing with trailing-sentence overlap.

    A chunk is closed before the next sentence when it already meets
    ``min_chunk_size`` and any of these hold:

    - appending the sentence would exceed ``max_chunk_size``
    - it already holds ``max_sentences_per_chunk`` sentences
    - the sentence starts a new paragraph (with ``preserve_paragraphs``) and
      that whole paragraph would not fit alongside the buffer

    A buffer still below ``min_chunk_size`` that cannot take the whole next
    sentence takes a word-boundary head of it instead.
    """

    def __init__(
        self,
        max_chunk_size: int = 500,
        min_chunk_size: int = 150,
        overlap_size: int = 75,
        max_sentences_per_chunk: int = 5,
        preserve_paragraphs: bool = True,
        analyzer: StructureAnalyzer | None = None,
    ):
        if min_chunk_size > max_chunk_size:
            raise ValueError(
                f"min_chunk_size ({min_chunk_size}) must not exceed "
                f"max_chunk_size ({max_chunk_size})"
            )
        if overlap_size >= min_chunk_size:
            raise ValueError(
                f"overlap_size ({overlap_size}) must be smaller than "
                f"min_chunk_size ({min_chunk_size})"
            )
        if max_sentences_per_chunk < 1:
            raise ValueError("max_sentences_per_chunk must be at least 1")

        self.max_chunk_size = max_chunk_size
        self.min_chunk_size = min_chunk_size
        self.overlap_size = overlap_size
        self.max_sentences_per_chunk = max_sentences_per_chunk
        self.preserve_paragraphs = preserve_paragraphs
        self.analyzer = analyzer or StructureAnalyzer()

    def chunk(
        self,
        text: str,
        structure: DocumentStructure | None = None,
        context: EducationalContext | None = None,
        metadata: dict | None = None,
    ) -> list[Chunk]:
        """Split text into enriched chunks.

        Args:
            text: Analysed document text
            structure: Structure of ``text``; analysed here when omitted
            context: Educational context merged into each chunk's metadata
            metadata: Extra document info merged into each chunk's metadata

        Returns:
            Chunks in strictly increasing start offset order
        """
        if not text.strip():
            return []

        if structure is None:
            structure = self.analyzer.analyze(text)

        sentences: list[Sentence] = []
        for sentence in segment_sentences(text, structure.blocks):
            sentences.extend(split_sentence(text, sentence, self.max_chunk_size))

        drafts = self._pack(text, sentences)
        chunks = self._enrich(drafts, structure, context, metadata)

        logger.debug(
            f"[Chunker] {len(sentences)} sentences packed into {len(chunks)} chunks "
            f"(max={self.max_chunk_size}, min={self.min_chunk_size}, overlap={self.overlap_size})"
        )
        return chunks

    def _pack(self, text: str, sentences: list[Sentence]) -> list[_Draft]:
        drafts: list[_Draft] = []
        buffer: list[Sentence] = []
        overlap_count = 0
        queue = deque(sentences)
        by_block: dict[int, list[Sentence]] = defaultdict(list)
        for sentence in sentences:
            by_block[sentence.block].append(sentence)
        block_lengths = {block: _joined_len(members) for block, members in by_block.items()}

        while queue:
            sentence = queue.popleft()
            if not buffer:
                buffer = [sentence]
                continue

            buffer_len = _joined_len(buffer)
            too_big = buffer_len + 1 + len(sentence.text) > self.max_chunk_size
            full = len(buffer) >= self.max_sentences_per_chunk
            new_paragraph = (
                self.preserve_paragraphs
                and sentence.block != buffer[-1].block
                and buffer_len + 1 + block_lengths[sentence.block] > self.max_chunk_size
            )

            if buffer_len >= self.min_chunk_size:
                if too_big or full or new_paragraph:
                    drafts.append(_Draft(buffer, overlap_count))
                    overlap = self._overlap(buffer)
                    buffer, overlap_count = self._seed(overlap, sentence)
                else:
                    buffer.append(sentence)
                continue

            if too_big:
                parts = split_head(text, sentence, self.max_chunk_size - buffer_len - 1)
                if parts is not None:
                    head, tail = parts
                    buffer.append(head)
                    queue.appendleft(tail)
                    continue

            buffer.append(sentence)

        if buffer:
            self._flush_tail(drafts, buffer, overlap_count)
        return drafts

    def _overlap(self, closed: list[Sentence]) -> list[Sentence]:
        """Trailing sentences of a closed chunk whose joined length fits the overlap."""
        overlap: list[Sentence] = []
        for sentence in reversed(closed):
            candidate = [sentence, *overlap]
            if _joined_len(candidate) > self.overlap_size:
                break
            overlap = candidate
        return overlap

    def _seed(self, overlap: list[Sentence], sentence: Sentence) -> tuple[list[Sentence], int]:
        """Start a new buffer, dropping leading overlap that would push it past
        ``max_chunk_size + overlap_size``."""
        limit = self.max_chunk_size + self.overlap_size
        while overlap and _joined_len([*overlap, sentence]) > limit:
            overlap = overlap[1:]
        return [*overlap, sentence], len(overlap)

    def _flush_tail(self, drafts: list[_Draft], buffer: list[Sentence], overlap_count: int):
        """Emit the trailing buffer without losing text.

        A short tail is merged into the previous chunk when the result stays
        within ``max_chunk_size + overlap_size``, otherwise it is emitted as
        a short final chunk.
        """
        if not drafts or _joined_len(buffer) >= self.min_chunk_size:
            drafts.append(_Draft(buffer, overlap_count))
            return

        new_sentences = buffer[overlap_count:]
        previous = drafts[-1]
        merged = previous.sentences + new_sentences
        if _joined_len(merged) <= self.max_chunk_size + self.overlap_size:
            drafts[-1] = _Draft(merged, previous.overlap_count)
        else:
            drafts.append(_Draft(buffer, overlap_count))

    def _enrich(
        self,
        drafts: list[_Draft],
        structure: DocumentStructure,
        context: EducationalContext | None,
        metadata: dict | None,
    ) -> list[Chunk]:
        page_starts = [p.start for p in structure.pages]
        heading_starts = [h.start for h in structure.headings]
        base_metadata = {**(metadata or {}), **(context.to_payload() if context else {})}

        total = len(drafts)
        chunks = []
        for index, draft in enumerate(drafts):
            start = draft.sentences[0].start
            end = draft.sentences[-1].end
            chunk_text = " ".join(s.text for s in draft.sentences)

            heading_pos = bisect.bisect_right(heading_starts, start) - 1
            section_title = structure.headings[heading_pos].text if heading_pos >= 0 else None

            page_pos = bisect.bisect_right(page_starts, start) - 1
            page_number = structure.pages[max(page_pos, 0)].number if structure.pages else None

            paragraph_number = next(
                (p.number for p in structure.paragraphs if p.start <= start < p.end), None
            )
            is_heading = any(start <= h.start and h.end <= end for h in structure.headings)
            is_list = any(lst.start < end and start < lst.end for lst in structure.lists)

            chunks.append(
                Chunk(
                    index=index,
                    text=chunk_text,
                    start_char=start,
                    end_char=end,
                    metadata=dict(base_metadata),
                    id=f"chunk_{index}",
                    char_count=len(chunk_text),
                    word_count=len(chunk_text.split()),
                    sentence_count=len(draft.sentences),
                    overlap_chars=draft.overlap_chars,
                    section_title=section_title,
                    page_number=page_number,
                    paragraph_number=paragraph_number,
                    is_heading=is_heading,
                    is_list=is_list,
                    previous_chunk_id=f"chunk_{index - 1}" if index > 0 else None,
                    next_chunk_id=f"chunk_{index + 1}" if index < total - 1 else None,
                    relative_position=(index + 1) / total,
                )
            )
        return chunks

    def get_chunking_stats(self, chunks: list[Chunk]) -> dict[str, Any]:
        """Summarize a chunk list."""
        config = {
            "max_chunk_size": self.max_chunk_size,
            "min_chunk_size": self.min_chunk_size,
            "overlap_size": self.overlap_size,
            "max_sentences_per_chunk": self.max_sentences_per_chunk,
        }
        if not chunks:
            return {"total_chunks": 0, "config": config}

        sizes = [c.char_count for c in chunks]
        return {
            "total_chunks": len(chunks),
            "avg_chunk_size": round(sum(sizes) / len(sizes), 1),
            "min_chunk_size": min(sizes),
            "max_chunk_size": max(sizes),
            "avg_words": round(sum(c.word_count for c in chunks) / len(chunks), 1),
            "avg_sentences": round(sum(c.sentence_count for c in chunks) / len(chunks), 1),
            "chunks_with_sections": sum(1 for c in chunks if c.section_title),
            "list_chunks": sum(1 for c in chunks if c.is_list),
            "config": config,
        }
