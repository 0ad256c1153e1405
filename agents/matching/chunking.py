"""
Text Chunking
Splits long documents into overlapping chunks sized for embedding, plus the
vector helpers used to compare and merge them.
"""
import math
import re
from collections.abc import Sequence
from typing import Optional

from backend.core.exceptions import ValidationError

from .models import ChunkingOptions, ChunkStrategy, TextChunk

Span = tuple[int, int]

# Rough estimate for English text
CHARS_PER_TOKEN = 4

# A paragraph runs from a non-space character up to a blank line or the end
_PARAGRAPH = re.compile(r"\S(?:.*?\S)?(?=\s*\n\s*\n|\s*\Z)", re.DOTALL)
_SENTENCE = re.compile(r"[^.!?\s][^.!?]*[.!?]*")
_SENTENCE_BREAK = re.compile(r"[.!?]+")
_WHITESPACE = re.compile(r"\s")

_SEPARATORS = {
    ChunkStrategy.PARAGRAPH: "\n\n",
    ChunkStrategy.SENTENCE: " ",
    ChunkStrategy.CHARACTER: "",
}


def estimate_token_count(text: str) -> int:
    """Approximate token count (one token per four characters)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 when either is all zeros."""
    if len(a) != len(b):
        raise ValidationError(f"Vectors must have the same length: {len(a)} != {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if not norm_a or not norm_b:
        return 0.0
    return dot / (norm_a * norm_b)


def average_vectors(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Element-wise mean of equally sized vectors."""
    if not vectors:
        raise ValidationError("Cannot average an empty list of vectors")
    return [sum(values) / len(vectors) for values in zip(*vectors)]


def chunk_text(text: str, options: Optional[ChunkingOptions] = None) -> list[TextChunk]:
    """
    Split text into chunks of at most max_chunk_size characters.

    The paragraph and sentence strategies pack whole units and start each new
    chunk with trailing units of the previous one, up to chunk_overlap
    characters. A unit longer than max_chunk_size is cut on word boundaries.
    The character strategy slides a window that overlaps the previous one by
    chunk_overlap characters. A trailing piece shorter than min_chunk_size is
    folded into the chunk before it.

    Returns:
        Chunks in document order; empty for blank text.
    """
    options = options or ChunkingOptions()
    if not text or not text.strip():
        return []

    separator = _SEPARATORS[options.strategy]

    if options.strategy == ChunkStrategy.CHARACTER:
        spans = _window_spans(text, 0, len(text), options, options.chunk_overlap)
        return _build_chunks(text, [[span] for span in spans], separator)

    pattern = _PARAGRAPH if options.strategy == ChunkStrategy.PARAGRAPH else _SENTENCE
    units: list[Span] = []
    for match in pattern.finditer(text):
        start = match.start()
        end = start + len(match.group().rstrip())
        if end - start > options.max_chunk_size:
            units.extend(_window_spans(text, start, end, options, overlap=0))
        elif end > start:
            units.append((start, end))

    return _build_chunks(text, _pack(units, separator, options), separator)


def merge_chunks(first: TextChunk, second: TextChunk) -> TextChunk:
    """Join two adjacent chunks; call renumber_chunks once merging is done."""
    content = f"{first.content}\n\n{second.content}"
    return first.model_copy(
        update={
            "content": content,
            "end_index": second.end_index,
            "word_count": first.word_count + second.word_count,
            "character_count": len(content),
            "sentence_count": first.sentence_count + second.sentence_count,
        }
    )


def renumber_chunks(chunks: list[TextChunk]) -> list[TextChunk]:
    """Reassign ids, positions and totals after chunks were merged."""
    return [
        chunk.model_copy(
            update={
                "id": f"chunk_{index}_{chunk.start_index}_{chunk.end_index}",
                "chunk_index": index,
                "total_chunks": len(chunks),
            }
        )
        for index, chunk in enumerate(chunks)
    ]


def _strip(text: str, start: int, end: int) -> Optional[Span]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if end > start else None


def _window_spans(text: str, start: int, end: int, options: ChunkingOptions, overlap: int) -> list[Span]:
    """Fixed-size windows over text[start:end], cut at whitespace when asked to."""
    spans: list[Span] = []
    while start < end:
        stop = min(start + options.max_chunk_size, end)
        if stop == end or end - stop < options.min_chunk_size:
            stop = end
        elif options.respect_word_boundaries:
            space = max(text.rfind(" ", start, stop + 1), text.rfind("\n", start, stop + 1))
            if space > start:
                stop = space

        span = _strip(text, start, stop)
        if span is not None:
            spans.append(span)
        if stop >= end:
            break

        next_start = max(stop - overlap, start + 1)
        if options.respect_word_boundaries and overlap and not text[next_start - 1].isspace():
            match = _WHITESPACE.search(text, next_start, stop)
            if match is not None:
                next_start = match.end()
        start = next_start
    return spans


def _length(units: list[Span], separator: str) -> int:
    return sum(end - start for start, end in units) + len(separator) * (len(units) - 1)


def _overlap(units: list[Span], separator: str, budget: int) -> list[Span]:
    """Trailing units (never all of them) that fit in budget characters."""
    carried: list[Span] = []
    size = 0
    for unit in reversed(units[1:]):
        added = unit[1] - unit[0] + (len(separator) if carried else 0)
        if size + added > budget:
            break
        carried.insert(0, unit)
        size += added
    return carried


def _pack(units: list[Span], separator: str, options: ChunkingOptions) -> list[list[Span]]:
    groups: list[list[Span]] = []
    current: list[Span] = []

    for unit in units:
        if current and _length(current + [unit], separator) > options.max_chunk_size:
            groups.append(current)
            room = options.max_chunk_size - (unit[1] - unit[0]) - len(separator)
            current = _overlap(current, separator, min(options.chunk_overlap, room)) + [unit]
        else:
            current.append(unit)

    if current:
        groups.append(current)

    if len(groups) > 1 and _length(groups[-1], separator) < options.min_chunk_size:
        tail = groups.pop()
        groups[-1] = groups[-1] + [unit for unit in tail if unit not in groups[-1]]

    return groups


def _build_chunks(text: str, groups: list[list[Span]], separator: str) -> list[TextChunk]:
    chunks = []
    for index, group in enumerate(groups):
        content = separator.join(text[start:end] for start, end in group)
        start, end = group[0][0], group[-1][1]
        chunks.append(
            TextChunk(
                id=f"chunk_{index}_{start}_{end}",
                content=content,
                start_index=start,
                end_index=end,
                chunk_index=index,
                total_chunks=len(groups),
                word_count=len(content.split()),
                character_count=len(content),
                sentence_count=len([s for s in _SENTENCE_BREAK.split(content) if s.strip()]),
            )
        )
    return chunks
