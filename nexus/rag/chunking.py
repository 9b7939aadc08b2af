from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TextChunk:
    index: int
    content: str
    start: int
    end: int


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[TextChunk]:
    """Split text into fixed-size windows that overlap by `overlap` characters.

    The last window may be shorter. Text of length L >= chunk_size yields
    ceil((L - overlap) / (chunk_size - overlap)) chunks; shorter text yields one.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    chunks: list[TextChunk] = []
    step = chunk_size - overlap
    start = 0
    length = len(text)
    while start < length:
        end = min(start + chunk_size, length)
        chunks.append(TextChunk(index=len(chunks), content=text[start:end], start=start, end=end))
        if end >= length:
            break
        start += step
    return chunks
