"""Tests for the FastAPI web application."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from ragchat.config import AppConfig
from ragchat.errors import EmbeddingFailure, ModelServerError
from ragchat.web import app as app_module
from ragchat.web.app import _resolve_db_path, app

client = TestClient(app)

TOPIC_TEXT = b"Zebras graze on savanna grass. Apples grow on orchard trees."


@pytest.fixture
def db(tmp_path: Path) -> Path:
    return tmp_path / "web.db"


def _upload(db: Path, name: str = "notes.txt", data: bytes = TOPIC_TEXT, content_type="text/plain"):
    return client.post(
        "/documents", params={"db": str(db)}, files={"file": (name, data, content_type)}
    )


class TestHelperFunctions:
    def test_resolve_db_path_with_none(self) -> None:
        assert isinstance(_resolve_db_path(None), Path)

    def test_resolve_db_path_with_path(self, tmp_path: Path) -> None:
        db_path = tmp_path / "custom.db"
        assert _resolve_db_path(db_path) == db_path


class TestDocumentsEndpoints:
    def test_upload(self, db: Path) -> None:
        response = _upload(db)

        assert response.status_code == 201
        document = response.json()["document"]
        assert document["name"] == "notes.txt"
        assert document["type"] == "text/plain"
        assert document["size"] == len(TOPIC_TEXT)
        assert document["chunk_count"] == 1
        assert "content" not in document

    def test_upload_guesses_type_for_octet_stream(self, db: Path) -> None:
        response = _upload(db, name="readme.md", content_type="application/octet-stream")
        assert response.json()["document"]["type"] == "text/markdown"

    def test_upload_empty_file(self, db: Path) -> None:
        response = _upload(db, name="blank.txt", data=b"   \n ")

        assert response.status_code == 422
        assert response.json() == {
            "detail": "File appears to be empty or unreadable",
            "name": "blank.txt",
        }

    def test_upload_too_large(self, db: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(app_module, "AppConfig", _small_upload_config)

        response = _upload(db)

        assert response.status_code == 413

    def test_upload_embedding_failure(self, db: Path) -> None:
        failing = AsyncMock(side_effect=EmbeddingFailure("Embedding backend down", item=0))
        with patch.object(app_module.RagService, "ingest_file", failing):
            response = _upload(db)

        assert response.status_code == 503
        assert response.json() == {"detail": "Embedding backend down", "item": 0}

    def test_list_missing_database(self, tmp_path: Path) -> None:
        response = client.get("/documents", params={"db": str(tmp_path / "none.db")})

        assert response.status_code == 200
        assert response.json()["documents"] == []
        assert response.json()["stats"]["document_count"] == 0
        assert not (tmp_path / "none.db").exists()

    def test_list_documents(self, db: Path) -> None:
        _upload(db, name="a.txt")
        _upload(db, name="b.txt")

        payload = client.get("/documents", params={"db": str(db)}).json()

        assert [doc["name"] for doc in payload["documents"]] == ["a.txt", "b.txt"]
        assert payload["stats"] == {
            "document_count": 2,
            "chunk_count": 2,
            "total_size_bytes": 2 * len(TOPIC_TEXT),
        }

    def test_get_document(self, db: Path) -> None:
        doc_id = _upload(db).json()["document"]["id"]

        response = client.get(f"/documents/{doc_id}", params={"db": str(db)})

        assert response.status_code == 200
        assert response.json()["document"]["content"] == TOPIC_TEXT.decode()

    def test_get_missing_document(self, db: Path) -> None:
        response = client.get("/documents/nope", params={"db": str(db)})
        assert response.status_code == 404

    def test_delete_document(self, db: Path) -> None:
        doc_id = _upload(db).json()["document"]["id"]

        response = client.delete(f"/documents/{doc_id}", params={"db": str(db)})

        assert response.json() == {"status": "ok", "deleted_id": doc_id}
        assert client.get(f"/documents/{doc_id}", params={"db": str(db)}).status_code == 404

    def test_delete_missing_document(self, db: Path) -> None:
        response = client.delete("/documents/nope", params={"db": str(db)})
        assert response.status_code == 404

    def test_get_without_database(self, tmp_path: Path) -> None:
        missing = tmp_path / "none.db"

        response = client.get("/documents/abc", params={"db": str(missing)})

        assert response.status_code == 404
        assert not missing.exists()

    def test_delete_without_database(self, tmp_path: Path) -> None:
        missing = tmp_path / "none.db"

        response = client.delete("/documents/abc", params={"db": str(missing)})

        assert response.status_code == 404
        assert not missing.exists()

    def test_clear_without_database(self, tmp_path: Path) -> None:
        missing = tmp_path / "none.db"

        response = client.delete("/documents", params={"db": str(missing)})

        assert response.json() == {"status": "ok"}
        assert not missing.exists()

    def test_clear_documents(self, db: Path) -> None:
        _upload(db)

        assert client.delete("/documents", params={"db": str(db)}).json() == {"status": "ok"}
        assert client.get("/documents", params={"db": str(db)}).json()["documents"] == []


class TestSearchEndpoint:
    def test_empty_query(self, db: Path) -> None:
        response = client.post("/search", json={"query": "   ", "db": str(db)})

        assert response.status_code == 400
        assert response.json()["detail"] == "Empty query"

    def test_search(self, db: Path) -> None:
        _upload(db)

        response = client.post(
            "/search",
            json={"query": "zebras graze", "db": str(db), "similarity_threshold": 0.1},
        )

        results = response.json()["results"]
        assert len(results) == 1
        assert results[0]["rank"] == 1
        assert results[0]["text"] == TOPIC_TEXT.decode()

    def test_search_empty_store(self, db: Path) -> None:
        response = client.post("/search", json={"query": "anything", "db": str(db)})
        assert response.json() == {"results": []}

    def test_context(self, db: Path) -> None:
        _upload(db)

        response = client.post(
            "/context",
            json={"query": "zebras graze", "db": str(db), "similarity_threshold": 0.1},
        )

        context = response.json()["context"]
        assert context.startswith("[CONTEXT]\n")
        assert context.endswith("[END CONTEXT]\n\n")


class TestAugmentEndpoint:
    def test_requires_model(self, db: Path) -> None:
        response = client.post("/chat/augment", json={"prompt": "hi", "db": str(db)})

        assert response.status_code == 400
        assert response.json()["detail"] == "Please select a model"

    def test_no_documents(self, db: Path) -> None:
        response = client.post(
            "/chat/augment", json={"prompt": "hi", "model": "llama3", "db": str(db)}
        )

        assert response.json() == {"prompt": "hi", "status": "no_documents", "results": []}

    def test_augmented(self, db: Path) -> None:
        _upload(db)

        response = client.post(
            "/chat/augment",
            json={
                "prompt": "zebras graze on savanna grass",
                "model": "llama3",
                "db": str(db),
                "similarity_threshold": 0.1,
            },
        )

        payload = response.json()
        assert payload["status"] == "augmented"
        assert payload["prompt"].startswith("[CONTEXT]")
        assert payload["prompt"].endswith("zebras graze on savanna grass")

    def test_disabled(self, db: Path) -> None:
        _upload(db)

        response = client.post(
            "/chat/augment",
            json={"prompt": "hi", "model": "llama3", "db": str(db), "enabled": False},
        )

        assert response.json()["status"] == "disabled"
        assert response.json()["prompt"] == "hi"

    def test_failure_falls_back_to_plain_prompt(self, db: Path) -> None:
        failing = AsyncMock(side_effect=EmbeddingFailure("Embedding backend down"))
        with patch.object(app_module.RagService, "augment_prompt", failing):
            response = client.post(
                "/chat/augment", json={"prompt": "hi", "model": "llama3", "db": str(db)}
            )

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        assert response.json()["prompt"] == "hi"

    def test_failure_without_fallback(self, db: Path) -> None:
        failing = AsyncMock(side_effect=EmbeddingFailure("Embedding backend down"))
        with patch.object(app_module.RagService, "augment_prompt", failing):
            response = client.post(
                "/chat/augment",
                json={
                    "prompt": "hi",
                    "model": "llama3",
                    "db": str(db),
                    "fallback_on_error": False,
                },
            )

        assert response.status_code == 503


class TestModelsEndpoint:
    def test_proxies_tags(self) -> None:
        tags = {"models": [{"name": "llama3:8b"}]}
        with patch.object(app_module.OllamaClient, "fetch_tags", AsyncMock(return_value=tags)):
            response = client.get("/api/tags")

        assert response.status_code == 200
        assert response.json() == tags

    def test_server_down(self) -> None:
        failing = AsyncMock(side_effect=ModelServerError("Model server unreachable"))
        with patch.object(app_module.OllamaClient, "fetch_tags", failing):
            response = client.get("/api/tags")

        assert response.status_code == 502
        assert response.json()["detail"] == "Model server unreachable"


def _small_upload_config(*args, **kwargs):
    config = AppConfig(*args, **kwargs)
    config.max_upload_bytes = 4
    return config
