"""Batch embedding processor tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from qmd.embeddings.batch import BatchEmbeddingProcessor
from qmd.embeddings.chunker import Chunk, DocumentChunker
from qmd.embeddings.embedder import (
    ConnectionStatus,
    EmbeddingAPIError,
    EmbeddingConnectionError,
    EmbeddingResult,
    ModelNotFoundError,
    OllamaEmbedder,
)

LONG_CONTENT = " ".join(f"Sentence number {i} is here." for i in range(40))


@pytest.fixture
def embedder(make_vector):
    """Embedder mock that fails for chunks whose seq is listed in ``failing``."""
    mock = MagicMock(spec=OllamaEmbedder)
    mock.failing = set()

    def embed(chunk):
        if chunk.seq in mock.failing:
            raise EmbeddingAPIError(f"boom on {chunk.key}")
        return EmbeddingResult(chunk.key, make_vector(chunk.seq), "fake-embed")

    mock.embed_chunk = AsyncMock(side_effect=embed)
    mock.test_connection = AsyncMock(
        return_value=ConnectionStatus(True, True, "fake-embed", latency_ms=3)
    )
    mock.install_instructions.return_value = "ollama pull fake-embed"
    return mock


@pytest.fixture
def processor(temp_db, temp_vectorstore, embedder):
    return BatchEmbeddingProcessor(
        temp_db,
        temp_vectorstore,
        embedder,
        chunker=DocumentChunker(max_tokens=50),
        batch_size=2,
        max_retries=0,
    )


def _chunks(count: int) -> list[Chunk]:
    return [Chunk("abc123", i, i * 10, f"chunk {i}", 2) for i in range(count)]


def _stored_keys(db) -> list[str]:
    rows = db.execute("SELECT hash_seq FROM content_vectors ORDER BY seq").fetchall()
    return [row["hash_seq"] for row in rows]


class TestProcessDocuments:
    async def test_stores_vectors_and_chunk_text(self, processor, temp_db, temp_vectorstore):
        result = await processor.process_documents([("abc123", "Cats are mammals.")])

        assert result.total_chunks == 1
        assert result.successful_embeddings == 1
        assert result.failed_embeddings == 0
        assert temp_vectorstore.count() == 1

        row = temp_db.execute("SELECT * FROM content_vectors").fetchone()
        assert row["hash_seq"] == "abc123_0"
        assert row["chunk_text"] == "Cats are mammals."
        assert row["model"] == "fake-embed"

    async def test_reprocessing_replaces_old_chunks(
        self, processor, temp_db, temp_vectorstore
    ):
        first = await processor.process_documents([("abc123", LONG_CONTENT)])
        assert first.total_chunks > 1

        await processor.process_documents([("abc123", "Now it is short.")])

        assert temp_vectorstore.count() == 1
        assert _stored_keys(temp_db) == ["abc123_0"]

    async def test_blank_documents_produce_nothing(self, processor, embedder):
        result = await processor.process_documents([("abc123", "   ")])

        assert result.total_chunks == 0
        embedder.embed_chunk.assert_not_called()


class TestProcessChunks:
    async def test_failures_are_counted_and_skipped(self, processor, embedder, temp_db):
        embedder.failing = {1}

        result = await processor.process_chunks(_chunks(3))

        assert result.successful_embeddings == 2
        assert result.failed_embeddings == 1
        assert "abc123_1" in result.errors[0]
        assert _stored_keys(temp_db) == ["abc123_0", "abc123_2"]

    async def test_stop_after_failing_batch(self, processor, embedder):
        embedder.failing = {0}
        progress = []

        result = await processor.process_chunks(
            _chunks(5), on_progress=progress.append, continue_on_error=False
        )

        # First batch holds chunks 0 and 1; nothing after it runs
        assert len(progress) == 1
        assert result.successful_embeddings == 1
        assert result.failed_embeddings == 1
        assert embedder.embed_chunk.call_count == 2

    async def test_progress_per_batch(self, processor):
        progress = []

        await processor.process_chunks(_chunks(3), on_progress=progress.append)

        assert [p.current_batch for p in progress] == [1, 2]
        assert progress[-1].total_batches == 2
        assert progress[-1].completed == 3
        assert progress[-1].percentage == 100

    async def test_retries_transient_errors(
        self, temp_db, temp_vectorstore, embedder, make_vector
    ):
        chunk = _chunks(1)[0]
        embedder.embed_chunk = AsyncMock(
            side_effect=[
                EmbeddingConnectionError("refused"),
                EmbeddingResult(chunk.key, make_vector(0), "fake-embed"),
            ]
        )
        processor = BatchEmbeddingProcessor(temp_db, temp_vectorstore, embedder, max_retries=1)

        with patch("qmd.embeddings.batch.asyncio.sleep", new_callable=AsyncMock):
            result = await processor.process_chunks([chunk])

        assert result.successful_embeddings == 1
        assert embedder.embed_chunk.call_count == 2

    async def test_missing_model_is_not_retried(self, temp_db, temp_vectorstore, embedder):
        embedder.embed_chunk = AsyncMock(side_effect=ModelNotFoundError("no model"))
        processor = BatchEmbeddingProcessor(temp_db, temp_vectorstore, embedder, max_retries=3)

        result = await processor.process_chunks(_chunks(1))

        assert result.failed_embeddings == 1
        assert embedder.embed_chunk.call_count == 1


class TestAvailability:
    async def test_ollama_not_running(self, processor, embedder):
        embedder.test_connection.return_value = ConnectionStatus(False, False, None)

        availability = await processor.check_availability()

        assert availability.available is False
        assert availability.error == "Ollama not running. Start with: ollama serve"

    async def test_model_missing(self, processor, embedder):
        embedder.test_connection.return_value = ConnectionStatus(True, False, None)

        availability = await processor.check_availability()

        assert availability.available is False
        assert availability.error == "ollama pull fake-embed"

    async def test_available(self, processor):
        availability = await processor.check_availability()

        assert availability.available is True
        assert availability.model == "fake-embed"

    async def test_graceful_degradation_skips_embedding(self, processor, embedder):
        embedder.test_connection.return_value = ConnectionStatus(False, False, None)

        result = await processor.process_documents_with_graceful_degradation(
            [("abc123", "Cats are mammals.")]
        )

        assert result.ollama_available is False
        assert result.errors == ["Ollama not running. Start with: ollama serve"]
        embedder.embed_chunk.assert_not_called()

    async def test_graceful_degradation_embeds_when_available(self, processor):
        result = await processor.process_documents_with_graceful_degradation(
            [("abc123", "Cats are mammals.")]
        )

        assert result.ollama_available is True
        assert result.successful_embeddings == 1


def test_performance_estimate():
    assert BatchEmbeddingProcessor.performance_estimate(100) == (15, 7)
    assert BatchEmbeddingProcessor.performance_estimate(0) == (0, 7)
