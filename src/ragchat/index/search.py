"""Semantic retrieval and prompt context formatting."""

from __future__ import annotations

import re
from typing import List, Sequence

from ragchat.embedding.encoder import EmbeddingProvider
from ragchat.index.similarity import rank_by_similarity
from ragchat.index.storage import SQLiteDocumentStore
from ragchat.models import Chunk, ScoredChunk

CONTEXT_START = "[CONTEXT]"
CONTEXT_END = "[END CONTEXT]"
CONTEXT_PREAMBLE = (
    "The following information has been retrieved from your uploaded documents "
    "to help answer your question:"
)

_CONTEXT_BLOCK_RE = re.compile(
    re.escape(CONTEXT_START) + r".*?" + re.escape(CONTEXT_END) + r"\s*", re.DOTALL
)


def format_context(results: Sequence[ScoredChunk]) -> str:
    """Render ranked chunks as a sentinel-delimited block for the prompt."""
    if not results:
        return ""

    sections = [
        f"[Document {rank}] (Relevance: {result.similarity * 100:.1f}%)\n{result.chunk.content}"
        for rank, result in enumerate(results, start=1)
    ]
    body = "\n\n".join(sections)
    return f"{CONTEXT_START}\n{CONTEXT_PREAMBLE}\n\n{body}\n\n{CONTEXT_END}\n\n"


def strip_context(text: str) -> str:
    """Remove every context block from a message."""
    return _CONTEXT_BLOCK_RE.sub("", text).strip()


class Searcher:
    """High-level API to query stored chunks."""

    def __init__(self, embedder: EmbeddingProvider, store: SQLiteDocumentStore) -> None:
        self.embedder = embedder
        self.store = store

    async def query(
        self,
        query_text: str,
        chunks: Sequence[Chunk],
        *,
        k: int = 5,
        similarity_threshold: float = 0.0,
    ) -> List[ScoredChunk]:
        """Rank ``chunks`` against the query, keep those at or above the
        threshold, then return the best ``k``."""
        if not chunks:
            return []

        query_vector = await self.embedder.embed(query_text, item="query")
        ranked = rank_by_similarity(query_vector, chunks)
        relevant = [result for result in ranked if result.similarity >= similarity_threshold]
        return relevant[: max(k, 0)]

    async def search(
        self, query_text: str, *, k: int = 5, similarity_threshold: float = 0.0
    ) -> List[ScoredChunk]:
        chunks = self.store.list_all_chunks()
        return await self.query(
            query_text, chunks, k=k, similarity_threshold=similarity_threshold
        )

    async def retrieve_context(
        self, query_text: str, max_results: int = 5, similarity_threshold: float = 0.0
    ) -> str:
        results = await self.search(
            query_text, k=max_results, similarity_threshold=similarity_threshold
        )
        return format_context(results)
