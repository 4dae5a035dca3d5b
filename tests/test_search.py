"""Tests for semantic search interface."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from ragchat.index.search import (
    CONTEXT_END,
    CONTEXT_START,
    Searcher,
    format_context,
    strip_context,
)
from ragchat.models import ScoredChunk

from conftest import make_chunk, make_document


def _scored(chunk_id: str, content: str, similarity: float) -> ScoredChunk:
    chunk = make_chunk(chunk_id)
    chunk.content = content
    return ScoredChunk(chunk=chunk, similarity=similarity)


class TestFormatContext:
    """Test prompt context rendering."""

    def test_empty_results(self) -> None:
        assert format_context([]) == ""

    def test_exact_layout(self) -> None:
        results = [
            _scored("a", "Paris is the capital of France.", 0.5),
            _scored("b", "The Seine flows through Paris.", 0.25),
        ]

        expected = (
            "[CONTEXT]\n"
            "The following information has been retrieved from your uploaded documents "
            "to help answer your question:\n"
            "\n"
            "[Document 1] (Relevance: 50.0%)\n"
            "Paris is the capital of France.\n"
            "\n"
            "[Document 2] (Relevance: 25.0%)\n"
            "The Seine flows through Paris.\n"
            "\n"
            "[END CONTEXT]\n"
            "\n"
        )
        assert format_context(results) == expected

    def test_relevance_has_one_decimal(self) -> None:
        text = format_context([_scored("a", "x", 0.87654)])
        assert "(Relevance: 87.7%)" in text

    def test_deterministic(self) -> None:
        results = [_scored("a", "one", 0.9), _scored("b", "two", 0.4)]
        assert format_context(results) == format_context(results)


class TestContextMarkers:
    def test_strip_context(self) -> None:
        message = format_context([_scored("a", "Stored fact.", 0.9)]) + "What is it?"
        assert strip_context(message) == "What is it?"

    def test_strip_leaves_plain_text(self) -> None:
        assert strip_context("  hello  ") == "hello"

    def test_strip_every_block(self) -> None:
        block = f"{CONTEXT_START}\nold\n{CONTEXT_END}\n\n"
        assert strip_context(block + "first " + block + "second") == "first second"


class TestSearcherQuery:
    """Ranking against an explicit chunk set."""

    @pytest.mark.asyncio
    async def test_no_chunks_skips_embedding(self) -> None:
        embedder = MagicMock()
        embedder.embed = AsyncMock()
        searcher = Searcher(embedder, MagicMock())

        assert await searcher.query("anything", []) == []
        embedder.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_filter_then_truncate(self) -> None:
        embedder = MagicMock()
        embedder.embed = AsyncMock(return_value=[1.0, 0.0])
        chunks = [
            make_chunk("low", embedding=(0.1, 1.0)),
            make_chunk("best", embedding=(1.0, 0.0)),
            make_chunk("good", embedding=(1.0, 0.5)),
            make_chunk("fine", embedding=(1.0, 0.9)),
        ]
        searcher = Searcher(embedder, MagicMock())

        results = await searcher.query("q", chunks, k=2, similarity_threshold=0.5)

        assert [r.chunk.id for r in results] == ["best", "good"]
        embedder.embed.assert_awaited_once_with("q", item="query")

    @pytest.mark.asyncio
    async def test_threshold_removes_everything(self) -> None:
        embedder = MagicMock()
        embedder.embed = AsyncMock(return_value=[1.0, 0.0])
        searcher = Searcher(embedder, MagicMock())

        results = await searcher.query(
            "q", [make_chunk("a", embedding=(0.0, 1.0))], similarity_threshold=0.1
        )

        assert results == []

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self) -> None:
        embedder = MagicMock()
        embedder.embed = AsyncMock(return_value=[1.0, 0.0])
        searcher = Searcher(embedder, MagicMock())

        results = await searcher.query(
            "q", [make_chunk("a", embedding=(1.0, 0.0))], similarity_threshold=1.0
        )

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_zero_k(self) -> None:
        embedder = MagicMock()
        embedder.embed = AsyncMock(return_value=[1.0, 0.0])
        searcher = Searcher(embedder, MagicMock())

        assert await searcher.query("q", [make_chunk("a", embedding=(1.0, 0.0))], k=0) == []


class TestSearcherStore:
    """Search over everything in the store."""

    @pytest.mark.asyncio
    async def test_search_reads_all_chunks(self, hashed_provider, store) -> None:
        store.save_document(make_document("a"), [make_chunk("a1", "a")])
        embedder = MagicMock()
        embedder.embed = AsyncMock(return_value=[1.0, 0.0, 0.0])

        results = await Searcher(embedder, store).search("q", k=5)

        assert [r.chunk.id for r in results] == ["a1"]
        assert results[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_store_gives_empty_context(self, hashed_provider, store) -> None:
        searcher = Searcher(hashed_provider, store)

        assert await searcher.retrieve_context("anything") == ""
        assert hashed_provider.is_initialized is False

    @pytest.mark.asyncio
    async def test_retrieve_context(self, hashed_provider, store) -> None:
        text = "Zebras graze on savanna grass."
        vector = await hashed_provider.embed(text)
        chunk = make_chunk("z", embedding=vector)
        chunk.content = text
        store.save_document(make_document(), [chunk])

        context = await Searcher(hashed_provider, store).retrieve_context(text)

        assert context.startswith("[CONTEXT]\n")
        assert "[Document 1] (Relevance: 100.0%)\nZebras graze on savanna grass." in context
        assert context.endswith("[END CONTEXT]\n\n")
