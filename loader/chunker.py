"""
Report chunker for retrieval.

Splits a generated report into overlapping, sentence-aligned chunks:
1. Paragraph units at blank lines and before Markdown headings
2. Sentences at CJK and Latin terminators (terminator kept)
3. Greedy packing of sentences up to the target size
4. Tail of the previous chunk prepended as overlap
5. Undersized chunks merged into their neighbours

Chunks never cross a paragraph boundary. A sentence longer than the target
size is kept whole.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from loader.section_extractor import extract_section

# Configuration constants
CHUNK_SIZE = 600       # characters per chunk before overlap
CHUNK_OVERLAP = 100    # characters carried over from the previous chunk
MIN_CHUNK_SIZE = 100   # chunks below this are merged into a neighbour

SENTENCE_TERMINATORS = frozenset("。！？；：.!?;:")

PARAGRAPH_SEPARATOR = re.compile(r"\n[ \t]*\n\s*|\n(?=[ \t]*#{1,6}\s)")

CJK_CHARACTER = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")
LATIN_WORD = re.compile(r"[A-Za-z0-9]+(?:['\-][A-Za-z0-9]+)*")


@dataclass
class ContentChunk:
    """A chunk with its position in the source report."""
    report_id: str
    chunk_index: int
    content: str
    section: str
    start_char: int
    end_char: int
    word_count: int


@dataclass
class _Piece:
    start: int
    end: int
    text: str = field(default="")


def _trimmed_span(text: str, start: int, end: int) -> tuple[int, int] | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end


def split_paragraphs(text: str) -> list[tuple[int, int]]:
    """Return (start, end) spans of the non-blank paragraphs in *text*."""
    spans = []
    cursor = 0
    for separator in PARAGRAPH_SEPARATOR.finditer(text):
        span = _trimmed_span(text, cursor, separator.start())
        if span:
            spans.append(span)
        cursor = separator.end()

    span = _trimmed_span(text, cursor, len(text))
    if span:
        spans.append(span)
    return spans


def split_sentences(text: str, start: int = 0, end: int | None = None) -> list[tuple[int, int]]:
    """
    Split text[start:end] into sentence spans.

    The terminator stays attached to the sentence it closes; trailing text
    without a terminator forms the last sentence.
    """
    if end is None:
        end = len(text)

    spans = []
    sentence_start = start
    for position in range(start, end):
        if text[position] in SENTENCE_TERMINATORS:
            span = _trimmed_span(text, sentence_start, position + 1)
            if span:
                spans.append(span)
            sentence_start = position + 1

    span = _trimmed_span(text, sentence_start, end)
    if span:
        spans.append(span)
    return spans


def _pack_sentences(text: str, chunk_size: int) -> list[_Piece]:
    pieces: list[_Piece] = []

    for paragraph_start, paragraph_end in split_paragraphs(text):
        current: _Piece | None = None

        for sentence_start, sentence_end in split_sentences(text, paragraph_start, paragraph_end):
            if current is not None and sentence_end - current.start > chunk_size:
                pieces.append(current)
                current = None

            if current is None:
                current = _Piece(sentence_start, sentence_end)
            else:
                current.end = sentence_end

        if current is not None:
            pieces.append(current)

    for piece in pieces:
        piece.text = text[piece.start:piece.end]
    return pieces


def _add_overlap(pieces: list[_Piece], overlap: int) -> list[_Piece]:
    if overlap <= 0:
        return pieces

    overlapped = [pieces[0]] if pieces else []
    for previous, piece in zip(pieces, pieces[1:]):
        carried = previous.text[-overlap:]
        overlapped.append(_Piece(piece.start, piece.end, f"{carried} {piece.text}"))
    return overlapped


def _merge_small(pieces: list[_Piece], min_size: int) -> list[_Piece]:
    merged: list[_Piece] = []

    for piece in pieces:
        if merged and (len(merged[-1].text) < min_size or len(piece.text) < min_size):
            last = merged[-1]
            merged[-1] = _Piece(last.start, piece.end, f"{last.text} {piece.text}")
        else:
            merged.append(piece)

    return merged


def _chunk_pieces(
    text: str,
    chunk_size: int,
    overlap: int,
    min_size: int
) -> list[_Piece]:
    if not text or not text.strip():
        return []

    pieces = _pack_sentences(text, chunk_size)
    pieces = _add_overlap(pieces, overlap)
    return _merge_small(pieces, min_size)


def split_into_chunks(
    text: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
    min_size: int = MIN_CHUNK_SIZE
) -> list[str]:
    """
    Split report text into overlapping chunk strings.

    Args:
        text: Full report text.
        chunk_size: Target characters per chunk, before overlap.
        overlap: Characters of the previous chunk prepended to each chunk.
        min_size: Chunks shorter than this are merged into a neighbour.

    Returns:
        Ordered chunk strings. Empty for blank input.
    """
    return [piece.text for piece in _chunk_pieces(text, chunk_size, overlap, min_size)]


def count_words(text: str) -> int:
    """CJK characters count as one word each, Latin words as one each."""
    return len(CJK_CHARACTER.findall(text)) + len(LATIN_WORD.findall(text))


def build_content_chunks(
    report_id: str,
    report_text: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
    min_size: int = MIN_CHUNK_SIZE
) -> list[ContentChunk]:
    """
    Chunk a report and attach storage metadata to every chunk.

    start_char/end_char delimit the chunk's own source span; the overlap
    prefix is not counted.
    """
    pieces = _chunk_pieces(report_text, chunk_size, overlap, min_size)

    return [
        ContentChunk(
            report_id=report_id,
            chunk_index=index,
            content=piece.text,
            section=extract_section(piece.text),
            start_char=piece.start,
            end_char=piece.end,
            word_count=count_words(piece.text),
        )
        for index, piece in enumerate(pieces)
    ]
