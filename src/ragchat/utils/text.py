"""Text helpers including boundary-aware chunking."""

from __future__ import annotations

from typing import Iterable, List

from ragchat.models import TextSpan

DEFAULT_CHUNK_CHARS = 512
DEFAULT_OVERLAP = 50


def chunk_text(
    text: str, *, max_chars: int = DEFAULT_CHUNK_CHARS, overlap: int = DEFAULT_OVERLAP
) -> List[TextSpan]:
    """Split text into overlapping chunks that end on natural boundaries.

    Each window of ``max_chars`` characters is cut after its last period, or
    failing that at its last whitespace, as long as the cut falls in the
    second half of the window. Otherwise the window is cut at its edge.
    Consecutive chunks share ``overlap`` characters.

    Offsets always describe the untrimmed window; the content is trimmed and
    windows that trim to nothing are dropped.
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got {max_chars}")
    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got {overlap}")
    if not text:
        return []

    length = len(text)
    if length <= max_chars:
        return [TextSpan(content=text, start_index=0, end_index=length)]

    spans: List[TextSpan] = []
    start = 0
    while start < length:
        end = min(start + max_chars, length)
        if end < length:
            end = _find_break(text, start, end, start + max_chars * 0.5)

        content = text[start:end].strip()
        if content:
            spans.append(TextSpan(content=content, start_index=start, end_index=end))

        if end >= length:
            break
        # Always move forward, even when overlap swallows the whole chunk.
        start = max(end - overlap, start + 1)

    return spans


def _find_break(text: str, start: int, end: int, floor: float) -> int:
    sentence_end = text.rfind(".", start, end)
    if sentence_end >= floor:
        return sentence_end + 1

    word_end = _last_whitespace(text, start, end)
    if word_end >= floor:
        return word_end

    return end


def _last_whitespace(text: str, start: int, end: int) -> int:
    for index in range(end - 1, start - 1, -1):
        if text[index].isspace():
            return index
    return -1


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
