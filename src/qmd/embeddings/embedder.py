"""Ollama embedding client built on LiteLLM."""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from litellm import aembedding
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    NotFoundError,
    Timeout,
)

from qmd.config import settings_or_defaults
from qmd.embeddings.chunker import Chunk

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Base exception for embedding client errors."""

    pass


class EmbeddingConnectionError(EmbeddingError):
    """Raised when unable to connect to the Ollama server."""

    pass


class EmbeddingTimeoutError(EmbeddingError):
    """Raised when an embedding request exceeds its timeout."""

    pass


class ModelNotFoundError(EmbeddingError):
    """Raised when neither the primary nor the fallback model is installed."""

    pass


class InvalidEmbeddingResponseError(EmbeddingError):
    """Raised when the server returns something that is not an embedding."""

    pass


class EmbeddingAPIError(EmbeddingError):
    """Raised for any other error reported by the embedding API."""

    pass


class ModelState(str, Enum):
    """Which embedding model is in use.

    PRIMARY -> FALLBACK -> EXHAUSTED, one step per model-not-found failure.
    """

    PRIMARY = "primary"
    FALLBACK = "fallback"
    EXHAUSTED = "exhausted"


@dataclass
class EmbeddingResult:
    """Embedding of one chunk."""

    hash_seq: str
    embedding: list[float]
    model: str


@dataclass
class ConnectionStatus:
    """Outcome of a connection test against the Ollama server."""

    connected: bool
    model_available: bool
    active_model: str | None
    latency_ms: int | None = None
    error: str | None = None


def _model_names(tags: dict[str, Any]) -> list[str]:
    """Model names from an /api/tags payload, without ":tag" suffixes."""
    return [m.get("name", "").split(":")[0] for m in tags.get("models") or []]


def _is_model_missing(e: Exception) -> bool:
    return isinstance(e, NotFoundError) or "not found" in str(e).lower()


class OllamaEmbedder:
    """Generates text embeddings with an Ollama model.

    Requests go through LiteLLM's ``aembedding``; the availability check
    talks to Ollama's ``/api/tags`` endpoint directly with httpx. When the
    primary model is not installed the client moves to the fallback model,
    and once both are missing it reports the model as unavailable.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        fallback_model: str | None = None,
        timeout: float | None = None,
        check_timeout: float | None = None,
        expected_dimensions: int | None = None,
    ):
        """Initialize the embedder.

        Args:
            base_url: Ollama server URL. Defaults to OLLAMA_ENDPOINT.
            model: Primary embedding model name.
            fallback_model: Model tried when the primary is missing.
            timeout: Seconds allowed for one embedding request.
            check_timeout: Seconds allowed for availability checks.
            expected_dimensions: Expected embedding length, used for warnings.
        """
        settings = settings_or_defaults()
        self.base_url = (base_url or settings.ollama_endpoint).rstrip("/")
        self.model = model or settings.embedding.model
        self.fallback_model = (
            fallback_model if fallback_model is not None else settings.embedding.fallback_model
        )
        self.timeout = timeout if timeout is not None else settings.embedding.timeout_seconds
        self.check_timeout = (
            check_timeout if check_timeout is not None else settings.embedding.check_timeout_seconds
        )
        self.expected_dimensions = expected_dimensions or settings.embedding.dimensions
        self.state = ModelState.PRIMARY
        self._available: bool | None = None

    @property
    def active_model(self) -> str | None:
        """Model currently used for requests, None once both are missing."""
        if self.state is ModelState.PRIMARY:
            return self.model
        if self.state is ModelState.FALLBACK:
            return self.fallback_model
        return None

    def _advance_model(self) -> None:
        """Move to the next model state after a model-not-found failure."""
        has_fallback = bool(self.fallback_model) and self.fallback_model != self.model
        if self.state is ModelState.PRIMARY and has_fallback:
            logger.warning(
                f"Embedding model '{self.model}' not found, falling back to '{self.fallback_model}'"
            )
            self.state = ModelState.FALLBACK
        else:
            logger.warning(f"Embedding model '{self.active_model}' not found, no model left to try")
            self.state = ModelState.EXHAUSTED
        self._available = None

    def install_instructions(self) -> str:
        """Operator hint for installing the embedding model."""
        return f"To install the embedding model, run:\n  ollama pull {self.model}"

    async def _fetch_tags(self) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.check_timeout) as client:
            response = await client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            return response.json()

    async def is_available(self, refresh: bool = False) -> bool:
        """Check that Ollama is reachable and an embedding model is installed.

        A positive result is remembered on this instance until a request
        fails; negative results are always re-checked.

        Args:
            refresh: Ignore the remembered result and check again.
        """
        if self._available and not refresh:
            return True

        try:
            tags = await self._fetch_tags()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Ollama not reachable at {self.base_url}: {e}")
            self._available = False
            return False

        names = _model_names(tags)
        if self.model in names:
            self.state = ModelState.PRIMARY
        elif self.fallback_model and self.fallback_model in names:
            if self.state is not ModelState.FALLBACK:
                logger.warning(
                    f"Embedding model '{self.model}' not installed, using '{self.fallback_model}'"
                )
            self.state = ModelState.FALLBACK
        else:
            logger.warning(
                f"No embedding model installed (wanted '{self.model}'). "
                f"{self.install_instructions()}"
            )
            self.state = ModelState.EXHAUSTED
            self._available = False
            return False

        self._available = True
        return True

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate an embedding for one text.

        Args:
            text: Text to embed.

        Returns:
            The embedding vector.

        Raises:
            ModelNotFoundError: If no embedding model is installed.
            EmbeddingTimeoutError: If the request timed out.
            EmbeddingConnectionError: If Ollama could not be reached.
            InvalidEmbeddingResponseError: If the response held no embedding.
            EmbeddingAPIError: For other API errors.
        """
        if not text or not text.strip():
            raise InvalidEmbeddingResponseError("Cannot generate embedding for empty text")

        while True:
            model = self.active_model
            if model is None:
                raise ModelNotFoundError(
                    f"Embedding model not available. {self.install_instructions()}"
                )

            try:
                response = await aembedding(
                    model=f"ollama/{model}",
                    input=[text],
                    api_base=self.base_url,
                    timeout=self.timeout,
                )
            except Timeout as e:
                raise EmbeddingTimeoutError(
                    f"Embedding request timed out after {self.timeout}s"
                ) from e
            except (NotFoundError, APIConnectionError, APIError) as e:
                if _is_model_missing(e):
                    self._advance_model()
                    continue
                if isinstance(e, APIConnectionError):
                    self._available = None
                    raise EmbeddingConnectionError(f"Connection failed: {e}") from e
                raise EmbeddingAPIError(f"Embedding API error: {e}") from e

            return self._parse_embedding(response)

    def _parse_embedding(self, response: Any) -> list[float]:
        data = getattr(response, "data", None)
        if not data:
            raise InvalidEmbeddingResponseError("Embedding response contained no data")

        item = data[0]
        if isinstance(item, dict):
            embedding = item.get("embedding")
        else:
            embedding = getattr(item, "embedding", None)
        if not isinstance(embedding, Sequence) or not embedding:
            raise InvalidEmbeddingResponseError("Embedding response contained no vector")

        vector = [float(v) for v in embedding]
        if len(vector) != self.expected_dimensions:
            logger.warning(
                f"Embedding from '{self.active_model}' has {len(vector)} dimensions, "
                f"expected {self.expected_dimensions}"
            )
        return vector

    async def generate_batch(
        self, texts: list[str], skip_on_error: bool = True
    ) -> list[list[float] | None]:
        """Embed several texts one after another.

        Args:
            texts: Texts to embed.
            skip_on_error: Put None in place of a failed embedding instead of
                raising.

        Returns:
            One entry per input text, in order.
        """
        embeddings: list[list[float] | None] = []
        for i, text in enumerate(texts):
            try:
                embeddings.append(await self.generate_embedding(text))
            except EmbeddingError as e:
                if not skip_on_error:
                    raise
                logger.warning(f"Skipping text {i} in batch: {e}")
                embeddings.append(None)
        return embeddings

    async def embed_chunk(self, chunk: Chunk) -> EmbeddingResult:
        """Embed one chunk, keyed by its ``"{hash}_{seq}"`` key."""
        embedding = await self.generate_embedding(chunk.text)
        return EmbeddingResult(
            hash_seq=chunk.key,
            embedding=embedding,
            model=self.active_model or self.model,
        )

    async def embed_chunks(
        self,
        chunks: list[Chunk],
        skip_on_error: bool = True,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[EmbeddingResult]:
        """Embed chunks in order, reporting progress after each one.

        Args:
            chunks: Chunks to embed.
            skip_on_error: Leave failed chunks out instead of raising.
            on_progress: Called with (done, total) after each chunk.

        Returns:
            Results for the chunks that were embedded.
        """
        results: list[EmbeddingResult] = []
        for i, chunk in enumerate(chunks, start=1):
            try:
                results.append(await self.embed_chunk(chunk))
            except EmbeddingError as e:
                if not skip_on_error:
                    raise
                logger.warning(f"Failed to embed chunk {chunk.key}: {e}")
            if on_progress:
                on_progress(i, len(chunks))
        return results

    async def test_connection(self) -> ConnectionStatus:
        """Query the server and report which model would be used."""
        start_time = time.perf_counter()
        try:
            tags = await self._fetch_tags()
        except httpx.HTTPStatusError as e:
            return ConnectionStatus(
                connected=True,
                model_available=False,
                active_model=None,
                error=f"API returned status {e.response.status_code}",
            )
        except (httpx.HTTPError, ValueError) as e:
            return ConnectionStatus(
                connected=False,
                model_available=False,
                active_model=None,
                error=f"Cannot connect to Ollama at {self.base_url}: {e}",
            )
        latency_ms = int((time.perf_counter() - start_time) * 1000)

        names = _model_names(tags)
        if self.model in names:
            return ConnectionStatus(True, True, self.model, latency_ms)
        if self.fallback_model and self.fallback_model in names:
            return ConnectionStatus(
                True,
                True,
                self.fallback_model,
                latency_ms,
                error=f"Primary model '{self.model}' not found, using fallback",
            )
        return ConnectionStatus(
            True,
            False,
            None,
            latency_ms,
            error=(
                f"Models not found. Available: {', '.join(names)}. "
                f"{self.install_instructions()}"
            ),
        )
