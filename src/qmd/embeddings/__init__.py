"""Chunking and embedding generation."""

from qmd.embeddings.batch import BatchEmbeddingProcessor, BatchProgress, BatchResult
from qmd.embeddings.chunker import Chunk, ChunkingStats, DocumentChunker, estimate_tokens
from qmd.embeddings.embedder import (
    EmbeddingError,
    ModelState,
    OllamaEmbedder,
)

__all__ = [
    "BatchEmbeddingProcessor",
    "BatchProgress",
    "BatchResult",
    "Chunk",
    "ChunkingStats",
    "DocumentChunker",
    "EmbeddingError",
    "ModelState",
    "OllamaEmbedder",
    "estimate_tokens",
]
