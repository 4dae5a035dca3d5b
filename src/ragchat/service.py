"""Document retrieval service used by the chat flow, CLI and web app."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from ragchat.config import AppConfig
from ragchat.embedding.encoder import EmbeddingProvider, get_shared_provider
from ragchat.index.indexer import Indexer, ProgressCallback
from ragchat.index.search import Searcher, format_context, strip_context
from ragchat.index.storage import SQLiteDocumentStore
from ragchat.models import Document, ScoredChunk

LOGGER = logging.getLogger(__name__)


class AugmentStatus(str, enum.Enum):
    DISABLED = "disabled"
    NO_DOCUMENTS = "no_documents"
    NO_MATCHES = "no_matches"
    AUGMENTED = "augmented"


@dataclass(slots=True)
class AugmentResult:
    prompt: str
    status: AugmentStatus
    results: List[ScoredChunk] = field(default_factory=list)


class RagService:
    """Ingest, list, delete and retrieve documents backed by one store."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: SQLiteDocumentStore,
        *,
        chunk_chars: int | None = None,
        overlap: int | None = None,
    ) -> None:
        defaults = AppConfig()
        self.store = store
        self.indexer = Indexer(
            embedder,
            store,
            chunk_chars=chunk_chars if chunk_chars is not None else defaults.chunk_chars,
            overlap=overlap if overlap is not None else defaults.overlap,
        )
        self.searcher = Searcher(embedder, store)

    @classmethod
    def from_config(cls, config: AppConfig, base_dir: Path | None = None) -> "RagService":
        """Open the configured database with the process-wide embedding model."""
        resolved_db = config.resolve_db_path(base_dir)
        resolved_db.parent.mkdir(parents=True, exist_ok=True)
        store = SQLiteDocumentStore(resolved_db)
        provider = get_shared_provider(config.embedding_config())
        return cls(provider, store, chunk_chars=config.chunk_chars, overlap=config.overlap)

    def close(self) -> None:
        self.store.close()

    async def ingest_file(
        self,
        name: str,
        content_type: str,
        size: int,
        text: str,
        on_progress: ProgressCallback | None = None,
    ) -> Document:
        return await self.indexer.ingest_file(name, content_type, size, text, on_progress)

    def delete_document(self, doc_id: str) -> bool:
        deleted = self.store.delete_document(doc_id)
        if deleted:
            LOGGER.info("Deleted document %s", doc_id)
        return deleted

    def get_document(self, doc_id: str) -> Document | None:
        return self.store.get_document(doc_id)

    def list_documents(self) -> List[Document]:
        return self.store.list_documents()

    def clear_all_documents(self) -> None:
        self.store.clear_all()
        LOGGER.info("Cleared all documents")

    async def search(
        self, query_text: str, max_results: int, similarity_threshold: float
    ) -> List[ScoredChunk]:
        return await self.searcher.search(
            query_text, k=max_results, similarity_threshold=similarity_threshold
        )

    async def retrieve_context(
        self, query_text: str, max_results: int, similarity_threshold: float
    ) -> str:
        return await self.searcher.retrieve_context(query_text, max_results, similarity_threshold)

    async def augment_prompt(
        self,
        prompt: str,
        *,
        max_results: int,
        similarity_threshold: float,
        enabled: bool = True,
    ) -> AugmentResult:
        """Prepend retrieved context to a chat prompt when anything relevant exists.

        Context blocks left in the prompt by an earlier call are removed first,
        so only the question itself is embedded and a single block is sent.
        """
        if not enabled:
            return AugmentResult(prompt=prompt, status=AugmentStatus.DISABLED)

        prompt = strip_context(prompt)

        chunks = self.store.list_all_chunks()
        if not chunks:
            LOGGER.warning("Retrieval is enabled but no documents are uploaded")
            return AugmentResult(prompt=prompt, status=AugmentStatus.NO_DOCUMENTS)

        results = await self.searcher.query(
            prompt, chunks, k=max_results, similarity_threshold=similarity_threshold
        )
        if not results:
            return AugmentResult(prompt=prompt, status=AugmentStatus.NO_MATCHES)

        LOGGER.info("Found %d relevant document chunks", len(results))
        return AugmentResult(
            prompt=format_context(results) + prompt,
            status=AugmentStatus.AUGMENTED,
            results=results,
        )
