"""Document ingestion pipeline."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence

from ragchat.embedding.encoder import EmbeddingProvider
from ragchat.errors import EmbeddingFailure, RagError, UnreadableFile
from ragchat.index.storage import SQLiteDocumentStore
from ragchat.ingestion.extract import read_file_text
from ragchat.models import Chunk, Document, new_id
from ragchat.utils.files import iter_document_paths
from ragchat.utils.text import DEFAULT_CHUNK_CHARS, DEFAULT_OVERLAP, chunk_text

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class IngestState(str, enum.Enum):
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class IngestJob:
    """Progress of a single document through the pipeline."""

    document_id: str
    name: str
    state: IngestState = IngestState.CHUNKING
    completed: int = 0
    total: int = 0

    def advance(self, state: IngestState) -> None:
        self.state = state
        LOGGER.debug("Ingest %s (%s): %s", self.name, self.document_id, state.value)


@dataclass(slots=True)
class IndexStats:
    ingested: int = 0
    failed: int = 0
    chunks: int = 0
    documents: list[Document] = field(default_factory=list)
    failures: dict[Path, str] = field(default_factory=dict)

    def record(self, document: Document) -> None:
        self.ingested += 1
        self.chunks += document.chunk_count
        self.documents.append(document)

    def record_failure(self, path: Path, reason: str) -> None:
        self.failed += 1
        self.failures[path] = reason


class Indexer:
    """Coordinates chunking, embedding and persistence of documents."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: SQLiteDocumentStore,
        *,
        chunk_chars: int = DEFAULT_CHUNK_CHARS,
        overlap: int = DEFAULT_OVERLAP,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.chunk_chars = chunk_chars
        self.overlap = overlap

    async def process_document(
        self,
        document: Document,
        on_progress: ProgressCallback | None = None,
        *,
        job: IngestJob | None = None,
    ) -> List[Chunk]:
        """Chunk and embed a document without persisting anything.

        ``on_progress`` receives 0.0 first, then the completed fraction after
        every chunk, ending at 1.0. On failure an `EmbeddingFailure` is raised
        carrying the failing chunk index and the chunks finished so far.
        """
        job = job or IngestJob(document_id=document.id, name=document.name)
        job.advance(IngestState.CHUNKING)
        spans = chunk_text(document.content, max_chars=self.chunk_chars, overlap=self.overlap)

        job.total = len(spans)
        job.advance(IngestState.EMBEDDING)
        if on_progress:
            on_progress(0.0)

        chunks: List[Chunk] = []
        for index, span in enumerate(spans):
            try:
                embedding = await self.embedder.embed(span.content, item=index)
            except EmbeddingFailure as exc:
                job.advance(IngestState.FAILED)
                raise EmbeddingFailure(
                    f"Failed to embed chunk {index + 1}/{len(spans)} of {document.name}: "
                    f"{exc.message}",
                    item=index,
                    completed=chunks,
                ) from exc

            chunks.append(
                Chunk(
                    id=new_id(),
                    document_id=document.id,
                    content=span.content,
                    embedding=embedding,
                    start_index=span.start_index,
                    end_index=span.end_index,
                    content_type=document.content_type,
                )
            )
            job.completed = index + 1
            if on_progress:
                on_progress(job.completed / job.total)

        if not spans and on_progress:
            on_progress(1.0)
        return chunks

    async def ingest_file(
        self,
        name: str,
        content_type: str,
        size: int,
        text: str,
        on_progress: ProgressCallback | None = None,
    ) -> Document:
        """Create, embed and store a document from already extracted text.

        Nothing is written unless every chunk was embedded.
        """
        if not text.strip():
            raise UnreadableFile(name)

        document = Document.create(name=name, content_type=content_type, size=size, content=text)
        job = IngestJob(document_id=document.id, name=name)
        chunks = await self.process_document(document, on_progress, job=job)

        document.chunk_count = len(chunks)
        job.advance(IngestState.PERSISTING)
        try:
            self.store.save_document(document, chunks)
        except RagError:
            job.advance(IngestState.FAILED)
            raise

        job.advance(IngestState.DONE)
        LOGGER.info("Processed %s with %d chunks", name, len(chunks))
        return document

    async def ingest_path(
        self, path: Path, on_progress: ProgressCallback | None = None
    ) -> Document:
        text, content_type, size = read_file_text(path)
        return await self.ingest_file(path.name, content_type, size, text, on_progress)

    async def index(self, paths: Sequence[Path]) -> IndexStats:
        """Ingest every supported file found under the given paths."""
        files = list(iter_document_paths(paths))
        stats = IndexStats()
        if not files:
            LOGGER.warning("No supported files found")
            return stats

        for path in files:
            try:
                LOGGER.info(f"Processing: {path}")
                document = await self.ingest_path(path)
            except RagError as e:
                LOGGER.error(f"Failed to process {path}: {e}")
                stats.record_failure(path, e.message)
                continue
            stats.record(document)

        return stats
