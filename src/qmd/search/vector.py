"""Semantic search over chunk embeddings with cosine distance."""

import logging
import sqlite3
from collections.abc import Sequence
from typing import Any, Protocol

from qmd.constants.search import (
    EMBEDDING_DIMENSIONS,
    MAX_COSINE_DISTANCE,
    MIN_COSINE_DISTANCE,
)
from qmd.db.connection import Database
from qmd.embeddings.embedder import (
    EmbeddingConnectionError,
    EmbeddingError,
    EmbeddingTimeoutError,
    ModelNotFoundError,
)
from qmd.search.errors import (
    DimensionMismatchError,
    EmbeddingGenerationError,
    NotInitializedError,
    QueryExecutionError,
    SearchTimeoutError,
    UnavailableError,
)
from qmd.search.models import VectorDiagnostics, VectorResult, VectorSearchOptions
from qmd.vectorstore.store import VectorStore

logger = logging.getLogger(__name__)


class QueryEmbedder(Protocol):
    """What the vector searcher needs from an embedding service."""

    @property
    def active_model(self) -> str | None: ...

    async def is_available(self) -> bool: ...

    def install_instructions(self) -> str: ...

    async def generate_embedding(self, text: str) -> list[float]: ...


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def distance_to_similarity(distance: float) -> float:
    """Convert cosine distance in [0, 2] to a 0-100 similarity.

    Distance 0 (identical) maps to 100 and distance 2 (opposite) to 0.
    """
    return (1 - _clamp(distance, MIN_COSINE_DISTANCE, MAX_COSINE_DISTANCE) / 2) * 100


def similarity_to_distance(similarity: float) -> float:
    """Convert a 0-100 similarity back to cosine distance in [0, 2]."""
    return 2 * (1 - _clamp(similarity, 0.0, 100.0) / 100)


class VectorSearcher:
    """K-nearest-neighbor search over the chunk vector index.

    The vector index only knows chunk keys, so matches are joined back to
    active documents in SQLite. A document is reported once, at the rank of
    its closest chunk.
    """

    def __init__(
        self,
        db: Database | None,
        vectorstore: VectorStore | None,
        embedder: QueryEmbedder | None,
        expected_dimensions: int = EMBEDDING_DIMENSIONS,
    ):
        """Initialize the searcher.

        Args:
            db: Database holding documents and content_vectors.
            vectorstore: Chunk embedding index.
            embedder: Service used to embed query text.
            expected_dimensions: Required embedding length.
        """
        self._db = db
        self._vectorstore = vectorstore
        self._embedder = embedder
        self.expected_dimensions = expected_dimensions

    async def search(
        self, query: str, options: VectorSearchOptions | None = None
    ) -> list[VectorResult]:
        """Embed the query and search by vector.

        Args:
            query: Natural-language query.
            options: Collection filter, limit and minimum similarity.

        Returns:
            Results ordered by ascending distance with 1-based ranks.

        Raises:
            NotInitializedError: If no embedder or index is configured.
            UnavailableError: If the embedding service is unreachable or
                its model is missing. The message includes an install hint.
            SearchTimeoutError: If embedding the query timed out.
            EmbeddingGenerationError: If embedding the query failed.
        """
        if not query or not query.strip():
            return []
        if self._embedder is None:
            raise NotInitializedError("Embedding service not configured")

        if not await self._embedder.is_available():
            raise UnavailableError(
                f"Embedding service unavailable.\n{self._embedder.install_instructions()}"
            )

        try:
            embedding = await self._embedder.generate_embedding(query)
        except EmbeddingTimeoutError as e:
            raise SearchTimeoutError(f"Query embedding timed out: {e}") from e
        except (EmbeddingConnectionError, ModelNotFoundError) as e:
            raise UnavailableError(
                f"{e}\n{self._embedder.install_instructions()}"
            ) from e
        except EmbeddingError as e:
            raise EmbeddingGenerationError(f"Failed to embed query: {e}") from e

        return await self.search_with_vector(embedding, options)

    async def search_with_vector(
        self, embedding: Sequence[float], options: VectorSearchOptions | None = None
    ) -> list[VectorResult]:
        """Search with a precomputed query embedding.

        Args:
            embedding: Query vector; must have ``expected_dimensions`` values.
            options: Collection filter, limit and minimum similarity.

        Returns:
            Results ordered by ascending distance with 1-based ranks.

        Raises:
            DimensionMismatchError: If the vector has the wrong length.
            NotInitializedError: If the index or tables do not exist.
            QueryExecutionError: If the index query fails.
        """
        options = options or VectorSearchOptions()
        if self._db is None or self._vectorstore is None:
            raise NotInitializedError("Vector index not initialized")
        if len(embedding) != self.expected_dimensions:
            raise DimensionMismatchError(self.expected_dimensions, len(embedding))

        try:
            matches = self._vectorstore.query(embedding, options.limit)
        except Exception as e:
            raise QueryExecutionError(f"Vector search failed: {e}") from e
        if not matches:
            return []

        max_distance = (
            similarity_to_distance(options.min_similarity)
            if options.min_similarity is not None
            else MAX_COSINE_DISTANCE
        )

        documents = self._load_documents(
            list(dict.fromkeys(m.hash for m in matches)), options.collection_filter
        )
        chunk_texts = self._load_chunk_texts([m.hash_seq for m in matches])

        results: list[VectorResult] = []
        seen: set[str] = set()
        for match in matches:
            # Post-filter: the KNN query is distance-ordered but not distance-bounded
            if match.distance > max_distance:
                continue
            document = documents.get(match.hash)
            if document is None or match.hash in seen:
                continue
            seen.add(match.hash)
            results.append(
                VectorResult(
                    hash=match.hash,
                    title=document["title"],
                    content=document["content"],
                    path=document["path"],
                    similarity=distance_to_similarity(match.distance),
                    distance=match.distance,
                    rank=len(results) + 1,
                    seq=match.seq,
                    chunk_text=chunk_texts.get(match.hash_seq),
                )
            )
        return results

    async def is_ready(self, check_embedder: bool = False) -> bool:
        """Check that the vector index is queryable.

        Args:
            check_embedder: Also require the embedding service to be reachable.
        """
        if self._db is None or self._vectorstore is None:
            return False
        try:
            self._vectorstore.count()
            if not self._db.table_exists("content_vectors"):
                return False
        except Exception as e:
            logger.debug(f"Vector index not ready: {e}")
            return False

        if check_embedder:
            if self._embedder is None:
                return False
            return await self._embedder.is_available()
        return True

    def vector_count(self) -> int:
        """Number of stored chunk embeddings, 0 if the index is unusable."""
        if self._vectorstore is None:
            return 0
        try:
            return self._vectorstore.count()
        except Exception as e:
            logger.debug(f"Could not count vectors: {e}")
            return 0

    async def diagnostics(self) -> VectorDiagnostics:
        """Summarize vector search health."""
        error = None
        embedder_available = False
        try:
            ready = await self.is_ready()
            if self._embedder is not None:
                embedder_available = await self._embedder.is_available()
        except Exception as e:
            ready = False
            error = str(e)

        if not ready and error is None:
            error = "Vector index not initialized"
        elif ready and not embedder_available and error is None:
            error = (
                self._embedder.install_instructions()
                if self._embedder is not None
                else "Embedding service not configured"
            )

        return VectorDiagnostics(
            ready=ready,
            vector_count=self.vector_count(),
            embedder_available=embedder_available,
            active_model=self._embedder.active_model if self._embedder is not None else None,
            expected_dimensions=self.expected_dimensions,
            error=error,
        )

    def _load_documents(
        self, hashes: list[str], collection_filter: str | None
    ) -> dict[str, Any]:
        placeholders = ", ".join("?" for _ in hashes)
        sql = """
            SELECT d.hash, d.title, d.content, d.path
            FROM documents d
        """
        params: list[Any] = []
        if collection_filter:
            sql += " JOIN collections c ON d.collection_id = c.id"
        sql += f" WHERE d.hash IN ({placeholders}) AND d.active = 1"
        params.extend(hashes)
        if collection_filter:
            sql += " AND c.name = ?"
            params.append(collection_filter)

        rows = self._query(sql, tuple(params))
        return {row["hash"]: row for row in rows}

    def _load_chunk_texts(self, keys: list[str]) -> dict[str, str]:
        placeholders = ", ".join("?" for _ in keys)
        rows = self._query(
            f"SELECT hash_seq, chunk_text FROM content_vectors WHERE hash_seq IN ({placeholders})",
            tuple(keys),
        )
        return {row["hash_seq"]: row["chunk_text"] for row in rows}

    def _query(self, sql: str, params: tuple[Any, ...]) -> list[sqlite3.Row]:
        assert self._db is not None
        try:
            return self._db.execute(sql, params).fetchall()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                raise NotInitializedError(f"Vector tables not initialized: {e}") from e
            raise QueryExecutionError(f"Vector search failed: {e}") from e
        except sqlite3.Error as e:
            raise QueryExecutionError(f"Vector search failed: {e}") from e
