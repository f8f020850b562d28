"""
Text Chunking
=============

Deterministic, overlapping segmentation of ticket bodies, attachment text
and knowledge content before embedding.
"""

from typing import List

from helpdesk.core import ValidationException

# Preferred chunk endings, strongest first
_BREAKS = ("\n\n", "\n", ". ")


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """
    Split text into chunks of at most ``size`` characters.

    Chunk k+1 starts exactly ``overlap`` characters before chunk k ends,
    so ``chunks[0] + "".join(c[overlap:] for c in chunks[1:]) == text``.
    A chunk ends on a paragraph, line or sentence break found in the
    second half of its window when one exists.

    Args:
        text: Text to chunk
        size: Maximum chunk length in characters
        overlap: Characters shared by consecutive chunks

    Returns:
        List of chunks; empty for blank text

    Raises:
        ValidationException: If not ``0 <= overlap < size``
    """
    if size <= 0 or overlap < 0 or overlap >= size:
        raise ValidationException(
            "Chunk overlap must satisfy 0 <= overlap < size",
            {"size": size, "overlap": overlap}
        )

    if not text or not text.strip():
        return []

    text_length = len(text)
    if text_length <= size:
        return [text]

    chunks = []
    start = 0
    while True:
        end = start + size
        if end >= text_length:
            chunks.append(text[start:])
            return chunks

        end = _break_point(text, start, end, size, overlap)
        chunks.append(text[start:end])
        start = end - overlap


def _break_point(text: str, start: int, end: int, size: int, overlap: int) -> int:
    for separator in _BREAKS:
        position = text.rfind(separator, start, end)
        candidate = position + len(separator)
        # The next chunk must still start after this one
        if position > start + size // 2 and candidate - overlap > start:
            return candidate
    return end


class TextChunker:
    """Chunker bound to a size/overlap configuration."""

    def __init__(self, size: int, overlap: int):
        if size <= 0 or overlap < 0 or overlap >= size:
            raise ValidationException(
                "Chunk overlap must satisfy 0 <= overlap < size",
                {"size": size, "overlap": overlap}
            )
        self.size = size
        self.overlap = overlap

    def split(self, text: str) -> List[str]:
        return chunk_text(text, self.size, self.overlap)
