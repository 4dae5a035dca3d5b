"""Shared fixtures: offline embeddings and throwaway databases."""

from __future__ import annotations

from pathlib import Path

import pytest

from ragchat.embedding.encoder import EmbeddingConfig, EmbeddingProvider, reset_shared_provider
from ragchat.index.storage import SQLiteDocumentStore
from ragchat.models import Chunk, Document


@pytest.fixture(autouse=True)
def _isolated_shared_provider(monkeypatch: pytest.MonkeyPatch):
    """Every test starts without a loaded model and with the hashed backend."""
    monkeypatch.setenv("RAGCHAT_EMBEDDING_BACKEND", "hashed")
    reset_shared_provider()
    yield
    reset_shared_provider()


@pytest.fixture
def hashed_provider() -> EmbeddingProvider:
    return EmbeddingProvider(EmbeddingConfig(backend="hashed"))


@pytest.fixture
def store(tmp_path: Path):
    db = SQLiteDocumentStore(tmp_path / "test.db")
    yield db
    db.close()


def make_document(doc_id: str = "doc-1", content: str = "Some text", **overrides) -> Document:
    values = dict(
        id=doc_id,
        name=f"{doc_id}.txt",
        content_type="text/plain",
        size=len(content),
        content=content,
    )
    values.update(overrides)
    return Document(**values)


def make_chunk(
    chunk_id: str, doc_id: str = "doc-1", embedding=(1.0, 0.0, 0.0), start: int = 0, end: int = 10
) -> Chunk:
    return Chunk(
        id=chunk_id,
        document_id=doc_id,
        content=f"content of {chunk_id}",
        embedding=list(embedding),
        start_index=start,
        end_index=end,
        content_type="text/plain",
    )
