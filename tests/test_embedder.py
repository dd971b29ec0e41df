"""Ollama embedder tests."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from litellm.exceptions import APIConnectionError, APIError, NotFoundError, Timeout

from qmd.embeddings.chunker import Chunk
from qmd.embeddings.embedder import (
    EmbeddingAPIError,
    EmbeddingConnectionError,
    EmbeddingTimeoutError,
    InvalidEmbeddingResponseError,
    ModelNotFoundError,
    ModelState,
    OllamaEmbedder,
)

VECTOR = [0.1] * 768


def _response(vector=VECTOR) -> MagicMock:
    return MagicMock(data=[{"embedding": vector}])


def _not_found(model: str) -> NotFoundError:
    return NotFoundError(
        message=f'model "{model}" not found, try pulling it first',
        model=model,
        llm_provider="ollama",
    )


def _tags(*names: str) -> dict:
    return {"models": [{"name": name} for name in names]}


@pytest.fixture
def embedder():
    return OllamaEmbedder(
        base_url="http://ollama:11434/",
        model="nomic-embed-text",
        fallback_model="mxbai-embed-large",
        timeout=30,
        check_timeout=5,
        expected_dimensions=768,
    )


@pytest.fixture
def mock_aembedding():
    """Mock litellm embedding response."""
    with patch("qmd.embeddings.embedder.aembedding", new_callable=AsyncMock) as mock:
        mock.return_value = _response()
        yield mock


class TestGenerateEmbedding:
    async def test_returns_vector(self, embedder, mock_aembedding):
        vector = await embedder.generate_embedding("hello")

        assert vector == VECTOR
        kwargs = mock_aembedding.call_args.kwargs
        assert kwargs["model"] == "ollama/nomic-embed-text"
        assert kwargs["input"] == ["hello"]
        assert kwargs["api_base"] == "http://ollama:11434"
        assert kwargs["timeout"] == 30

    async def test_accepts_object_items(self, embedder, mock_aembedding):
        mock_aembedding.return_value = MagicMock(data=[MagicMock(embedding=VECTOR)])

        assert await embedder.generate_embedding("hello") == VECTOR

    async def test_falls_back_when_primary_missing(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = [_not_found("nomic-embed-text"), _response()]

        vector = await embedder.generate_embedding("hello")

        assert vector == VECTOR
        assert embedder.state is ModelState.FALLBACK
        assert embedder.active_model == "mxbai-embed-large"
        assert mock_aembedding.call_args.kwargs["model"] == "ollama/mxbai-embed-large"

    async def test_exhausted_after_both_models_missing(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = [
            _not_found("nomic-embed-text"),
            _not_found("mxbai-embed-large"),
        ]

        with pytest.raises(ModelNotFoundError) as exc_info:
            await embedder.generate_embedding("hello")

        assert "ollama pull nomic-embed-text" in str(exc_info.value)
        assert embedder.state is ModelState.EXHAUSTED
        assert embedder.active_model is None
        assert mock_aembedding.call_count == 2

        # No further requests once exhausted
        with pytest.raises(ModelNotFoundError):
            await embedder.generate_embedding("again")
        assert mock_aembedding.call_count == 2

    async def test_no_fallback_configured(self, mock_aembedding):
        embedder = OllamaEmbedder(model="nomic-embed-text", fallback_model="")
        mock_aembedding.side_effect = _not_found("nomic-embed-text")

        with pytest.raises(ModelNotFoundError):
            await embedder.generate_embedding("hello")

        assert mock_aembedding.call_count == 1

    async def test_timeout(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = Timeout(
            message="Request timed out", model="nomic-embed-text", llm_provider="ollama"
        )

        with pytest.raises(EmbeddingTimeoutError):
            await embedder.generate_embedding("hello")

    async def test_connection_refused(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = APIConnectionError(
            message="Connection refused", llm_provider="ollama", model="nomic-embed-text"
        )

        with pytest.raises(EmbeddingConnectionError) as exc_info:
            await embedder.generate_embedding("hello")

        assert "Connection failed" in str(exc_info.value)

    async def test_api_error(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = APIError(
            status_code=500,
            message="internal server error",
            llm_provider="ollama",
            model="nomic-embed-text",
        )

        with pytest.raises(EmbeddingAPIError):
            await embedder.generate_embedding("hello")

    async def test_empty_response(self, embedder, mock_aembedding):
        mock_aembedding.return_value = MagicMock(data=[])

        with pytest.raises(InvalidEmbeddingResponseError):
            await embedder.generate_embedding("hello")

    async def test_empty_text(self, embedder, mock_aembedding):
        with pytest.raises(InvalidEmbeddingResponseError):
            await embedder.generate_embedding("   ")

        mock_aembedding.assert_not_called()

    async def test_unexpected_dimensions_logged_not_rejected(
        self, embedder, mock_aembedding, caplog
    ):
        mock_aembedding.return_value = _response([0.5] * 1024)

        with caplog.at_level(logging.WARNING):
            vector = await embedder.generate_embedding("hello")

        assert len(vector) == 1024
        assert "1024 dimensions" in caplog.text


class TestAvailability:
    async def test_primary_installed(self, embedder):
        with patch.object(
            embedder, "_fetch_tags", AsyncMock(return_value=_tags("nomic-embed-text:latest"))
        ):
            assert await embedder.is_available() is True

        assert embedder.state is ModelState.PRIMARY

    async def test_only_fallback_installed(self, embedder):
        with patch.object(
            embedder, "_fetch_tags", AsyncMock(return_value=_tags("mxbai-embed-large:latest"))
        ):
            assert await embedder.is_available() is True

        assert embedder.state is ModelState.FALLBACK
        assert embedder.active_model == "mxbai-embed-large"

    async def test_no_model_installed(self, embedder):
        with patch.object(embedder, "_fetch_tags", AsyncMock(return_value=_tags("llama3:8b"))):
            assert await embedder.is_available() is False

        assert embedder.state is ModelState.EXHAUSTED

    async def test_server_unreachable(self, embedder):
        with patch.object(
            embedder, "_fetch_tags", AsyncMock(side_effect=httpx.ConnectError("refused"))
        ):
            assert await embedder.is_available() is False

    async def test_positive_result_is_remembered(self, embedder):
        fetch = AsyncMock(return_value=_tags("nomic-embed-text"))
        with patch.object(embedder, "_fetch_tags", fetch):
            assert await embedder.is_available() is True
            assert await embedder.is_available() is True
            assert await embedder.is_available(refresh=True) is True

        assert fetch.call_count == 2

    def test_install_instructions(self, embedder):
        assert embedder.install_instructions() == (
            "To install the embedding model, run:\n  ollama pull nomic-embed-text"
        )


class TestBatchEmbedding:
    async def test_generate_batch_skips_failures(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = [
            _response(),
            APIError(status_code=500, message="boom", llm_provider="ollama", model="m"),
            _response(),
        ]

        vectors = await embedder.generate_batch(["a", "b", "c"])

        assert vectors == [VECTOR, None, VECTOR]

    async def test_generate_batch_can_raise(self, embedder, mock_aembedding):
        mock_aembedding.side_effect = APIError(
            status_code=500, message="boom", llm_provider="ollama", model="m"
        )

        with pytest.raises(EmbeddingAPIError):
            await embedder.generate_batch(["a"], skip_on_error=False)

    async def test_embed_chunk_uses_chunk_key(self, embedder, mock_aembedding):
        chunk = Chunk(hash="abc123", seq=2, pos=0, text="hello", token_count=2)

        result = await embedder.embed_chunk(chunk)

        assert result.hash_seq == "abc123_2"
        assert result.embedding == VECTOR
        assert result.model == "nomic-embed-text"

    async def test_embed_chunks_reports_progress(self, embedder, mock_aembedding):
        chunks = [Chunk("abc123", i, 0, f"text {i}", 3) for i in range(3)]
        progress = []

        results = await embedder.embed_chunks(
            chunks, on_progress=lambda done, total: progress.append((done, total))
        )

        assert [r.hash_seq for r in results] == ["abc123_0", "abc123_1", "abc123_2"]
        assert progress == [(1, 3), (2, 3), (3, 3)]


class TestConnection:
    async def test_connected_with_primary(self, embedder):
        tags = AsyncMock(return_value=_tags("nomic-embed-text"))
        with patch.object(embedder, "_fetch_tags", tags):
            status = await embedder.test_connection()

        assert status.connected is True
        assert status.model_available is True
        assert status.active_model == "nomic-embed-text"
        assert status.error is None

    async def test_not_running(self, embedder):
        with patch.object(
            embedder, "_fetch_tags", AsyncMock(side_effect=httpx.ConnectError("refused"))
        ):
            status = await embedder.test_connection()

        assert status.connected is False
        assert status.model_available is False

    async def test_bad_status(self, embedder):
        request = httpx.Request("GET", "http://ollama:11434/api/tags")
        error = httpx.HTTPStatusError(
            "server error", request=request, response=httpx.Response(500, request=request)
        )
        with patch.object(embedder, "_fetch_tags", AsyncMock(side_effect=error)):
            status = await embedder.test_connection()

        assert status.connected is True
        assert status.model_available is False
        assert "500" in status.error

    async def test_models_missing(self, embedder):
        with patch.object(embedder, "_fetch_tags", AsyncMock(return_value=_tags("llama3"))):
            status = await embedder.test_connection()

        assert status.model_available is False
        assert "llama3" in status.error
        assert "ollama pull" in status.error
