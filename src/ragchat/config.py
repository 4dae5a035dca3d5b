"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ragchat.embedding.encoder import DEFAULT_MODEL, EmbeddingConfig
from ragchat.ingestion.extract import MAX_FILE_BYTES
from ragchat.utils.text import DEFAULT_CHUNK_CHARS, DEFAULT_OVERLAP

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_BACKEND = "sentence-transformers"


def _get_default_db_path() -> Path:
    """Get the default database path."""
    # When running from source, prefer local data/ if it exists
    local_db = Path("data/ragchat.db")
    if local_db.exists():
        return local_db

    return Path.home() / ".ragchat" / "ragchat.db"


def _get_default_ollama_url() -> str:
    return os.environ.get("OLLAMA_URL") or DEFAULT_OLLAMA_URL


def _get_default_backend() -> str:
    return os.environ.get("RAGCHAT_EMBEDDING_BACKEND") or DEFAULT_BACKEND


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    embedding_backend: str = field(default_factory=_get_default_backend)
    chunk_chars: int = DEFAULT_CHUNK_CHARS
    overlap: int = DEFAULT_OVERLAP
    max_results: int = 5
    similarity_threshold: float = 0.3
    ollama_url: str = field(default_factory=_get_default_ollama_url)
    max_upload_bytes: int = MAX_FILE_BYTES

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(model_name=self.model_name, backend=self.embedding_backend)
