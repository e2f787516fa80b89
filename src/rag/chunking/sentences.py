"""Sentence segmentation with character offsets.

Punctuation-based: a sentence ends at ``.``, ``!``, ``?`` or ``…`` (plus any
closing quotes/brackets) when followed by whitespace and a character that is
not lower-case. Blank lines and list-item lines always start a new sentence.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass

from src.rag.structure import Block

_TERMINATOR = re.compile(r"[.!?…]+[\"'”’»)\]]*")
_WORD = re.compile(r"\S+")
_LIST_ITEM_LINE = re.compile(
    r"^[ \t]*(?:[•\-\*▪◦·]|\d+[.)]|[a-z]\)|[ivxlcdm]+\.)[ \t]+", re.MULTILINE
)


@dataclass(frozen=True)
class Sentence:
    """A sentence span.

    ``text`` is whitespace-collapsed; ``start``/``end`` index the source text.
    ``block`` is the index of the blank-line separated block it belongs to.
    """

    text: str
    start: int
    end: int
    block: int


def collapse(text: str) -> str:
    """Collapse all whitespace runs to single spaces."""
    return " ".join(text.split())


def _segments(text: str, start: int, end: int) -> Iterator[tuple[int, int]]:
    """Split a block before every list-item line."""
    cuts = [m.start() for m in _LIST_ITEM_LINE.finditer(text, start, end) if m.start() > start]
    bounds = [start, *cuts, end]
    for seg_start, seg_end in zip(bounds, bounds[1:], strict=False):
        if text[seg_start:seg_end].strip():
            yield seg_start, seg_end


def _sentence_spans(text: str, start: int, end: int) -> Iterator[tuple[int, int]]:
    sent_start = start
    for match in _TERMINATOR.finditer(text, start, end):
        stop = match.end()
        if stop >= end or not text[stop].isspace():
            continue
        following = text[stop:end].lstrip()
        if not following or following[0].islower():
            continue
        yield sent_start, stop
        sent_start = end - len(following)
    yield sent_start, end


def segment_sentences(text: str, blocks: list[Block]) -> list[Sentence]:
    """Split text into sentences, block by block."""
    sentences = []
    for block_index, block in enumerate(blocks):
        for seg_start, seg_end in _segments(text, block.start, block.end):
            for sent_start, sent_end in _sentence_spans(text, seg_start, seg_end):
                raw = text[sent_start:sent_end]
                stripped = raw.strip()
                if not stripped:
                    continue
                lead = len(raw) - len(raw.lstrip())
                s_start = sent_start + lead
                sentences.append(
                    Sentence(
                        text=collapse(stripped),
                        start=s_start,
                        end=s_start + len(stripped),
                        block=block_index,
                    )
                )
    return sentences


def head_end(text: str, start: int, end: int, limit: int) -> int | None:
    """End offset of the longest word prefix of ``text[start:end]`` whose
    collapsed length is at most ``limit``; None if not even one word fits."""
    length = 0
    last = None
    for match in _WORD.finditer(text, start, end):
        word_len = match.end() - match.start()
        added = word_len if last is None else length + 1 + word_len
        if added > limit:
            break
        length = added
        last = match.end()
    return last


def split_sentence(text: str, sentence: Sentence, limit: int) -> list[Sentence]:
    """Cut a sentence into pieces of at most ``limit`` collapsed characters.

    Cuts fall on word boundaries; a single word longer than ``limit`` is cut
    mid-word.
    """
    if len(sentence.text) <= limit:
        return [sentence]

    pieces = []
    pos = sentence.start
    while pos < sentence.end:
        cut = head_end(text, pos, sentence.end, limit)
        if cut is None:
            cut = pos + limit
        piece = text[pos:cut].strip()
        if piece:
            piece_start = pos + (len(text[pos:cut]) - len(text[pos:cut].lstrip()))
            pieces.append(
                Sentence(
                    text=collapse(piece),
                    start=piece_start,
                    end=piece_start + len(piece),
                    block=sentence.block,
                )
            )
        pos = cut
        while pos < sentence.end and text[pos].isspace():
            pos += 1
    return pieces


def split_head(text: str, sentence: Sentence, limit: int) -> tuple[Sentence, Sentence] | None:
    """Cut a sentence into a head of at most ``limit`` collapsed characters and
    the remaining tail. Returns None when no non-empty head is possible."""
    if limit <= 0:
        return None
    cut = head_end(text, sentence.start, sentence.end, limit)
    if cut is None:
        cut = sentence.start + limit
    tail_start = cut
    while tail_start < sentence.end and text[tail_start].isspace():
        tail_start += 1
    if tail_start >= sentence.end:
        return None

    head_raw = text[sentence.start : cut].rstrip()
    head = Sentence(
        text=collapse(head_raw),
        start=sentence.start,
        end=sentence.start + len(head_raw),
        block=sentence.block,
    )
    tail = Sentence(
        text=collapse(text[tail_start : sentence.end]),
        start=tail_start,
        end=sentence.end,
        block=sentence.block,
    )
    return head, tail
