"""
Module: ingestion.chunking

Purpose:
    Splits subject text and plain-text segments into request-sized
    chunks so every extraction call stays under the service's
    character budget. Blocks (pages or segments) are never reordered and
    only split when a single block exceeds the budget by itself.

Key Classes:
    - TextChunk: One request worth of text and the units it covers

Key Functions:
    - format_page_block(): "# Page N" header + page text
    - chunk_pages(): Page texts -> chunks
    - chunk_segments(): Plain-text segments -> chunks
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from qbank_toolkit.core.models import PageText, TextSegment

BLOCK_SEPARATOR = "\n\n"


@dataclass(frozen=True, slots=True)
class TextChunk:
    """
    Text sent in one extraction request.

    Attributes:
        text: Chunk body
        first_unit: First page number (or segment index) included
        last_unit: Last page number (or segment index) included
    """

    text: str
    first_unit: int
    last_unit: int

    @property
    def char_count(self) -> int:
        return len(self.text)


def format_page_block(page: PageText) -> str:
    return f"# Page {page.page_number}\n{page.text.strip()}"


def chunk_pages(pages: Sequence[PageText], max_chars: int) -> List[TextChunk]:
    """
    Chunk page texts; pages without text are skipped.

    Example:
        >>> # three 1200-char pages, budget 2500 -> chunks [p1+p2], [p3]
    """
    blocks = [(page.page_number, format_page_block(page)) for page in pages if page.has_text]
    return _chunk_blocks(blocks, max_chars)


def chunk_segments(segments: Sequence[TextSegment], max_chars: int) -> List[TextChunk]:
    blocks = [(segment.index, segment.text) for segment in segments if segment.text.strip()]
    return _chunk_blocks(blocks, max_chars)


def _chunk_blocks(blocks: Sequence[Tuple[int, str]], max_chars: int) -> List[TextChunk]:
    if max_chars < 1:
        raise ValueError(f"max_chars must be >= 1: {max_chars}")

    chunks: List[TextChunk] = []
    parts: List[str] = []
    first = last = -1
    size = 0

    def flush() -> None:
        nonlocal parts, size, first
        if parts:
            chunks.append(TextChunk(BLOCK_SEPARATOR.join(parts), first, last))
        parts = []
        size = 0
        first = -1

    for unit, text in blocks:
        if len(text) > max_chars:
            flush()
            for offset in range(0, len(text), max_chars):
                chunks.append(TextChunk(text[offset:offset + max_chars], unit, unit))
            continue

        added = len(text) + (len(BLOCK_SEPARATOR) if parts else 0)
        if parts and size + added > max_chars:
            flush()
            added = len(text)
        if not parts:
            first = unit
        parts.append(text)
        last = unit
        size += added

    flush()
    return chunks
