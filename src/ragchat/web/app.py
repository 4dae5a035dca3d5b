"""FastAPI application exposing document retrieval to the chat client."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ragchat.config import AppConfig
from ragchat.errors import (
    DuplicateKey,
    EmbeddingFailure,
    ModelServerError,
    RagError,
    StorageFailure,
    UnreadableFile,
)
from ragchat.ingestion.extract import extract_text, guess_content_type
from ragchat.llm.ollama import OllamaClient
from ragchat.models import Document, ScoredChunk
from ragchat.service import RagService

LOGGER = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[RagError], int] = {
    UnreadableFile: 422,
    DuplicateKey: 409,
    EmbeddingFailure: 503,
    StorageFailure: 500,
    ModelServerError: 502,
}


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    yield


app = FastAPI(title="ragchat", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str
    db: Path | None = None
    max_results: int | None = None
    similarity_threshold: float | None = None


class AugmentPayload(BaseModel):
    prompt: str
    model: str | None = None
    enabled: bool = True
    db: Path | None = None
    max_results: int | None = None
    similarity_threshold: float | None = None
    fallback_on_error: bool = True


@app.exception_handler(RagError)
async def rag_error_handler(request: Request, exc: RagError) -> JSONResponse:
    status = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)), 500
    )
    LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": exc.message, **exc.details})


def _build_config(db: Path | None) -> AppConfig:
    return AppConfig(db_path=db if db is not None else AppConfig().db_path)


def _resolve_db_path(db: Path | None) -> Path:
    return _build_config(db).resolve_db_path(Path.cwd())


def _open_service(db: Path | None) -> RagService:
    return RagService.from_config(_build_config(db), Path.cwd())


def _document_payload(document: Document, *, include_content: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": document.id,
        "name": document.name,
        "type": document.content_type,
        "size": document.size,
        "upload_date": document.uploaded_at.isoformat(),
        "chunk_count": document.chunk_count,
    }
    if include_content:
        payload["content"] = document.content
    return payload


def _result_payload(rank: int, result: ScoredChunk) -> dict[str, Any]:
    return {
        "rank": rank,
        "similarity": result.similarity,
        "document_id": result.chunk.document_id,
        "chunk_id": result.chunk.id,
        "start_index": result.chunk.start_index,
        "end_index": result.chunk.end_index,
        "text": result.chunk.content,
    }


def _clean_query(text: str) -> str:
    query = text.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")
    return query


@app.post("/documents", status_code=201)
async def upload_document(file: UploadFile = File(...), db: Path | None = None) -> dict[str, Any]:
    name = file.filename or "upload"
    data = await file.read()
    config = _build_config(db)
    if len(data) > config.max_upload_bytes:
        raise HTTPException(
            status_code=413, detail=f"File exceeds {config.max_upload_bytes} bytes"
        )

    content_type = file.content_type
    if not content_type or content_type == "application/octet-stream":
        content_type = guess_content_type(Path(name))

    text = extract_text(data, content_type, name=name)
    service = _open_service(db)
    try:
        document = await service.ingest_file(name, content_type, len(data), text)
    finally:
        service.close()

    return {"status": "ok", "document": _document_payload(document)}


@app.get("/documents")
async def list_documents(db: Path | None = None) -> dict[str, Any]:
    """List all stored documents with totals."""
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {
            "documents": [],
            "stats": {"document_count": 0, "chunk_count": 0, "total_size_bytes": 0},
        }

    service = _open_service(db)
    try:
        documents = service.list_documents()
        stats = service.store.get_stats()
    finally:
        service.close()

    return {"documents": [_document_payload(doc) for doc in documents], "stats": stats}


@app.get("/documents/{doc_id}")
async def get_document(doc_id: str, db: Path | None = None) -> dict[str, Any]:
    if not _resolve_db_path(db).exists():
        raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")

    service = _open_service(db)
    try:
        document = service.get_document(doc_id)
    finally:
        service.close()

    if document is None:
        raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")
    return {"document": _document_payload(document, include_content=True)}


@app.delete("/documents/{doc_id}")
async def delete_document(doc_id: str, db: Path | None = None) -> dict[str, Any]:
    """Delete a document and its chunks."""
    if not _resolve_db_path(db).exists():
        raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")

    service = _open_service(db)
    try:
        deleted = service.delete_document(doc_id)
    finally:
        service.close()

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")
    return {"status": "ok", "deleted_id": doc_id}


@app.delete("/documents")
async def clear_documents(db: Path | None = None) -> dict[str, str]:
    if not _resolve_db_path(db).exists():
        return {"status": "ok"}

    service = _open_service(db)
    try:
        service.clear_all_documents()
    finally:
        service.close()
    return {"status": "ok"}


@app.post("/search")
async def search_documents(payload: SearchPayload) -> dict[str, List[dict[str, Any]]]:
    query = _clean_query(payload.query)
    defaults = AppConfig()
    max_results = max(1, min(payload.max_results or defaults.max_results, 50))
    threshold = (
        payload.similarity_threshold
        if payload.similarity_threshold is not None
        else defaults.similarity_threshold
    )

    service = _open_service(payload.db)
    try:
        results = await service.search(query, max_results, threshold)
    finally:
        service.close()

    return {"results": [_result_payload(rank, r) for rank, r in enumerate(results, start=1)]}


@app.post("/context")
async def retrieve_context(payload: SearchPayload) -> dict[str, str]:
    query = _clean_query(payload.query)
    defaults = AppConfig()
    service = _open_service(payload.db)
    try:
        context = await service.retrieve_context(
            query,
            payload.max_results or defaults.max_results,
            payload.similarity_threshold
            if payload.similarity_threshold is not None
            else defaults.similarity_threshold,
        )
    finally:
        service.close()
    return {"context": context}


@app.post("/chat/augment")
async def augment_prompt(payload: AugmentPayload) -> dict[str, Any]:
    """Prepend retrieved document context to a chat prompt."""
    if not payload.model:
        raise HTTPException(status_code=400, detail="Please select a model")

    defaults = AppConfig()
    service = _open_service(payload.db)
    try:
        result = await service.augment_prompt(
            payload.prompt,
            max_results=payload.max_results or defaults.max_results,
            similarity_threshold=payload.similarity_threshold
            if payload.similarity_threshold is not None
            else defaults.similarity_threshold,
            enabled=payload.enabled,
        )
    except RagError as exc:
        if not payload.fallback_on_error:
            raise
        LOGGER.warning("Retrieval failed, proceeding without context: %s", exc)
        return {"prompt": payload.prompt, "status": "error", "error": exc.message, "results": []}
    finally:
        service.close()

    return {
        "prompt": result.prompt,
        "status": result.status.value,
        "results": [_result_payload(rank, r) for rank, r in enumerate(result.results, start=1)],
    }


@app.get("/api/tags")
async def list_models() -> dict[str, Any]:
    """Proxy the model server's model list."""
    client = OllamaClient(AppConfig().ollama_url)
    return await client.fetch_tags()
