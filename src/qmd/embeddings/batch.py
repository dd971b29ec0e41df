"""Batch embedding of document chunks into the vector index."""

import asyncio
import logging
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from qmd.db.connection import Database
from qmd.embeddings.chunker import Chunk, DocumentChunker
from qmd.embeddings.embedder import (
    EmbeddingError,
    EmbeddingResult,
    ModelNotFoundError,
    OllamaEmbedder,
)
from qmd.vectorstore.store import VectorStore

logger = logging.getLogger(__name__)

# Typical per-chunk latency of a local Ollama embedding call
AVG_MS_PER_CHUNK = 150


@dataclass
class BatchProgress:
    """Progress snapshot passed to progress callbacks."""

    total: int
    completed: int
    failed: int
    current_batch: int
    total_batches: int

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 100
        return round((self.completed + self.failed) / self.total * 100)


@dataclass
class BatchResult:
    """Outcome of a batch embedding run."""

    total_chunks: int = 0
    successful_embeddings: int = 0
    failed_embeddings: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    ollama_available: bool = True


@dataclass
class Availability:
    available: bool
    model: str | None
    error: str | None = None


ProgressCallback = Callable[[BatchProgress], None]


class BatchEmbeddingProcessor:
    """Chunks documents, embeds the chunks and stores the vectors.

    Each embedding is written to the vector store under its chunk key and
    mirrored into the ``content_vectors`` table with the chunk text.
    """

    def __init__(
        self,
        db: Database,
        vectorstore: VectorStore,
        embedder: OllamaEmbedder,
        chunker: DocumentChunker | None = None,
        batch_size: int = 10,
        max_retries: int = 1,
    ):
        self._db = db
        self._vectorstore = vectorstore
        self._embedder = embedder
        self._chunker = chunker or DocumentChunker()
        self.batch_size = batch_size
        self.max_retries = max_retries

    async def process_documents(
        self,
        documents: Iterable[tuple[str, str]],
        on_progress: ProgressCallback | None = None,
        continue_on_error: bool = True,
    ) -> BatchResult:
        """Replace the embeddings of each document with fresh ones.

        Args:
            documents: (hash, content) pairs.
            on_progress: Called after every batch.
            continue_on_error: Keep going after a chunk fails.

        Returns:
            Counts of embedded and failed chunks.
        """
        start_time = time.perf_counter()
        chunks: list[Chunk] = []
        for hash, content in documents:
            self._delete_document_vectors(hash)
            chunks.extend(self._chunker.chunk_document(hash, content))

        if not chunks:
            return BatchResult(duration_ms=int((time.perf_counter() - start_time) * 1000))

        return await self.process_chunks(chunks, on_progress, continue_on_error)

    async def process_chunks(
        self,
        chunks: list[Chunk],
        on_progress: ProgressCallback | None = None,
        continue_on_error: bool = True,
    ) -> BatchResult:
        """Embed chunks in batches and store the vectors.

        Args:
            chunks: Chunks to embed.
            on_progress: Called after every batch.
            continue_on_error: Keep going after a chunk fails. When False,
                processing stops after the batch holding the first failure.

        Returns:
            Counts of embedded and failed chunks, with error messages.
        """
        start_time = time.perf_counter()
        result = BatchResult(total_chunks=len(chunks))
        total_batches = math.ceil(len(chunks) / self.batch_size)

        for batch_index in range(total_batches):
            batch = chunks[batch_index * self.batch_size : (batch_index + 1) * self.batch_size]

            embedded: list[tuple[Chunk, EmbeddingResult]] = []
            for chunk in batch:
                try:
                    embedded.append((chunk, await self._embed_with_retry(chunk)))
                except EmbeddingError as e:
                    result.failed_embeddings += 1
                    result.errors.append(f"Chunk {chunk.key}: {e}")

            if embedded:
                self._store(embedded)
                result.successful_embeddings += len(embedded)

            if on_progress:
                on_progress(
                    BatchProgress(
                        total=len(chunks),
                        completed=result.successful_embeddings,
                        failed=result.failed_embeddings,
                        current_batch=batch_index + 1,
                        total_batches=total_batches,
                    )
                )

            if result.failed_embeddings and not continue_on_error:
                break

        if result.failed_embeddings:
            logger.error(
                f"Failed to embed {result.failed_embeddings} of {len(chunks)} chunks"
            )
        result.duration_ms = int((time.perf_counter() - start_time) * 1000)
        return result

    async def check_availability(self) -> Availability:
        """Check that Ollama is running and has an embedding model."""
        status = await self._embedder.test_connection()
        if not status.connected:
            return Availability(False, None, "Ollama not running. Start with: ollama serve")
        if not status.model_available:
            return Availability(
                False, None, status.error or self._embedder.install_instructions()
            )
        return Availability(True, status.active_model)

    async def process_documents_with_graceful_degradation(
        self,
        documents: Iterable[tuple[str, str]],
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """Embed documents if Ollama is usable, otherwise skip without raising."""
        availability = await self.check_availability()
        if not availability.available:
            logger.warning(f"Skipping embeddings: {availability.error}")
            return BatchResult(
                errors=[availability.error or "Ollama not available"],
                ollama_available=False,
            )
        return await self.process_documents(documents, on_progress)

    @staticmethod
    def performance_estimate(chunk_count: int) -> tuple[int, int]:
        """Rough duration of embedding ``chunk_count`` chunks.

        Returns:
            Tuple of (estimated seconds, chunks per second).
        """
        estimated_ms = chunk_count * AVG_MS_PER_CHUNK
        return math.ceil(estimated_ms / 1000), round(1000 / AVG_MS_PER_CHUNK)

    async def _embed_with_retry(self, chunk: Chunk) -> EmbeddingResult:
        attempt = 0
        while True:
            try:
                return await self._embedder.embed_chunk(chunk)
            except ModelNotFoundError:
                raise
            except EmbeddingError:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                await asyncio.sleep(0.1 * attempt)

    def _store(self, embedded: list[tuple[Chunk, EmbeddingResult]]) -> None:
        self._vectorstore.upsert_embeddings(
            ids=[chunk.key for chunk, _ in embedded],
            embeddings=[result.embedding for _, result in embedded],
            metadatas=[{"hash": chunk.hash, "seq": chunk.seq} for chunk, _ in embedded],
        )
        now = int(time.time() * 1000)
        with self._db.transaction():
            self._db.executemany(
                """
                INSERT OR REPLACE INTO content_vectors
                    (hash_seq, hash, seq, pos, chunk_text, token_count, model, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.key,
                        chunk.hash,
                        chunk.seq,
                        chunk.pos,
                        chunk.text,
                        chunk.token_count,
                        result.model,
                        now,
                    )
                    for chunk, result in embedded
                ],
            )

    def _delete_document_vectors(self, hash: str) -> None:
        self._vectorstore.delete_document(hash)
        with self._db.transaction():
            self._db.execute("DELETE FROM content_vectors WHERE hash = ?", (hash,))
