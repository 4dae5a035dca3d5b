"""SQLite persistence for documents and their embedded chunks."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Sequence

import numpy as np

from ragchat.errors import DuplicateKey, StorageFailure
from ragchat.models import Chunk, Document

_DOCUMENT_COLUMNS = "id, name, content_type, size, content, uploaded_at, chunk_count"
_CHUNK_COLUMNS = "id, document_id, content, embedding, start_index, end_index, content_type"


class SQLiteDocumentStore:
    """Persistence layer for documents and chunk embeddings.

    Chunks reference their document with ``ON DELETE CASCADE`` and every
    multi-record write runs inside a single transaction, so a chunk is never
    visible without its document.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        try:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys=ON;")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StorageFailure("open", str(db_path), str(exc)) from exc

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteDocumentStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL,
                    chunk_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    start_index INTEGER NOT NULL,
                    end_index INTEGER NOT NULL,
                    content_type TEXT,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )

    # Writes

    def add_document(self, document: Document) -> None:
        """Insert a new document; fails with `DuplicateKey` if the id exists."""
        try:
            with self.transaction():
                self._insert_document(document)
        except sqlite3.Error as exc:
            raise StorageFailure("add_document", document.id, str(exc)) from exc

    def add_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Insert a batch of chunks, all or nothing."""
        try:
            with self.transaction():
                self._insert_chunks(chunks)
        except sqlite3.Error as exc:
            raise StorageFailure("add_chunks", None, str(exc)) from exc

    def save_document(self, document: Document, chunks: Sequence[Chunk]) -> None:
        """Insert a document together with its chunks in one transaction."""
        try:
            with self.transaction():
                self._insert_document(document)
                self._insert_chunks(chunks)
        except sqlite3.Error as exc:
            raise StorageFailure("save_document", document.id, str(exc)) from exc

    def _insert_document(self, document: Document) -> None:
        conn = self._conn
        existing = conn.execute("SELECT 1 FROM documents WHERE id = ?", (document.id,)).fetchone()
        if existing:
            raise DuplicateKey("documents", document.id)

        conn.execute(
            f"INSERT INTO documents({_DOCUMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                document.id,
                document.name,
                document.content_type,
                document.size,
                document.content,
                document.uploaded_at.isoformat(),
                document.chunk_count,
            ),
        )

    def _insert_chunks(self, chunks: Sequence[Chunk]) -> None:
        conn = self._conn
        for chunk in chunks:
            try:
                conn.execute(
                    f"INSERT INTO chunks({_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        chunk.id,
                        chunk.document_id,
                        chunk.content,
                        sqlite3.Binary(np.asarray(chunk.embedding, dtype="float32").tobytes()),
                        chunk.start_index,
                        chunk.end_index,
                        chunk.content_type,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc):
                    raise DuplicateKey("chunks", chunk.id) from exc
                raise StorageFailure("add_chunks", chunk.id, str(exc)) from exc

    def delete_document(self, doc_id: str) -> bool:
        """Delete a document and all of its chunks atomically.

        Returns False when no such document exists.
        """
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM chunks WHERE document_id = ?", (doc_id,))
                cursor = conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise StorageFailure("delete_document", doc_id, str(exc)) from exc

    def clear_all(self) -> None:
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM chunks")
                conn.execute("DELETE FROM documents")
        except sqlite3.Error as exc:
            raise StorageFailure("clear_all", None, str(exc)) from exc

    # Reads

    def get_document(self, doc_id: str) -> Document | None:
        row = self._fetchone(
            "get_document",
            doc_id,
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
            (doc_id,),
        )
        return _row_to_document(row) if row is not None else None

    def list_documents(self) -> List[Document]:
        rows = self._fetchall(
            "list_documents",
            None,
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY uploaded_at, rowid",
            (),
        )
        return [_row_to_document(row) for row in rows]

    def get_chunks_for_document(self, doc_id: str) -> List[Chunk]:
        rows = self._fetchall(
            "get_chunks_for_document",
            doc_id,
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? ORDER BY start_index, rowid",
            (doc_id,),
        )
        return [_row_to_chunk(row) for row in rows]

    def list_all_chunks(self) -> List[Chunk]:
        rows = self._fetchall(
            "list_all_chunks", None, f"SELECT {_CHUNK_COLUMNS} FROM chunks ORDER BY rowid", ()
        )
        return [_row_to_chunk(row) for row in rows]

    def get_stats(self) -> dict[str, int]:
        row = self._fetchone(
            "get_stats",
            None,
            """
            SELECT
                (SELECT COUNT(*) FROM documents) AS document_count,
                (SELECT COUNT(*) FROM chunks) AS chunk_count,
                (SELECT COALESCE(SUM(size), 0) FROM documents) AS total_size_bytes
            """,
            (),
        )
        return {
            "document_count": row["document_count"],
            "chunk_count": row["chunk_count"],
            "total_size_bytes": row["total_size_bytes"],
        }

    def _fetchone(
        self, operation: str, record_id: str | None, sql: str, params: tuple
    ) -> sqlite3.Row | None:
        try:
            return self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageFailure(operation, record_id, str(exc)) from exc

    def _fetchall(
        self, operation: str, record_id: str | None, sql: str, params: tuple
    ) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageFailure(operation, record_id, str(exc)) from exc


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        name=row["name"],
        content_type=row["content_type"],
        size=row["size"],
        content=row["content"],
        uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
        chunk_count=row["chunk_count"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        content=row["content"],
        embedding=np.frombuffer(row["embedding"], dtype="float32").tolist(),
        start_index=row["start_index"],
        end_index=row["end_index"],
        content_type=row["content_type"],
    )
