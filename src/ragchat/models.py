"""Core ragchat data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List


def new_id() -> str:
    """Return a fresh opaque record identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Document:
    """An uploaded document and its extracted text."""

    id: str
    name: str
    content_type: str
    size: int
    content: str
    uploaded_at: datetime = field(default_factory=utc_now)
    chunk_count: int = 0

    @classmethod
    def create(cls, name: str, content_type: str, size: int, content: str) -> "Document":
        return cls(
            id=new_id(),
            name=name,
            content_type=content_type,
            size=size,
            content=content,
        )


@dataclass(slots=True)
class TextSpan:
    """Piece of document text with its character offsets."""

    content: str
    start_index: int
    end_index: int


@dataclass(slots=True)
class Chunk:
    """Chunk of document text paired with its embedding."""

    id: str
    document_id: str
    content: str
    embedding: List[float]
    start_index: int
    end_index: int
    content_type: str | None = None


@dataclass(slots=True)
class ScoredChunk:
    chunk: Chunk
    similarity: float
