"""ChromaDB vector store implementation."""

import gc
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import chromadb
from chromadb.config import Settings

from qmd.constants.search import VECTOR_COLLECTION_NAME


@dataclass
class VectorMatch:
    """One nearest-neighbor row: chunk key and cosine distance."""

    hash_seq: str
    hash: str
    seq: int
    distance: float


class VectorStore:
    """Vector store wrapper for ChromaDB.

    Stores one embedding per chunk under the key ``"{hash}_{seq}"`` and
    answers k-nearest-neighbor queries by cosine distance (0 = identical,
    2 = opposite). Embeddings are always supplied by the caller; the
    collection has no embedding function of its own.
    """

    def __init__(
        self,
        persist_path: Path | None = None,
        collection_name: str = VECTOR_COLLECTION_NAME,
    ) -> None:
        """Initialize vector store.

        Args:
            persist_path: Directory for ChromaDB persistence. None keeps the
                index in memory.
            collection_name: Name of the ChromaDB collection.
        """
        settings = Settings(anonymized_telemetry=False, allow_reset=True)
        if persist_path is None:
            self._client = chromadb.EphemeralClient(settings=settings)
        else:
            self._client = chromadb.PersistentClient(path=str(persist_path), settings=settings)
        self._collection_name = collection_name
        self._collection = self._open_collection()

    def _open_collection(self) -> chromadb.Collection:
        return self._client.get_or_create_collection(
            name=self._collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )

    @property
    def collection(self) -> chromadb.Collection:
        """Get the underlying ChromaDB collection."""
        return self._collection

    def upsert_embeddings(
        self,
        ids: list[str],
        embeddings: list[Sequence[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Insert or replace chunk embeddings.

        Args:
            ids: Chunk keys (``"{hash}_{seq}"``).
            embeddings: One vector per key.
            metadatas: One metadata dict per key; must contain ``hash`` and ``seq``.
        """
        self._collection.upsert(
            ids=ids,
            embeddings=[list(e) for e in embeddings],  # type: ignore[arg-type]
            metadatas=metadatas,  # type: ignore[arg-type]
        )

    def query(self, embedding: Sequence[float], k: int) -> list[VectorMatch]:
        """Return the k nearest chunks, closest first.

        Args:
            embedding: Query vector.
            k: Number of neighbors to return.

        Returns:
            Matches ordered by ascending cosine distance.
        """
        count = self._collection.count()
        if count == 0 or k <= 0:
            return []

        result = self._collection.query(
            query_embeddings=[list(embedding)],
            n_results=min(k, count),
            include=["metadatas", "distances"],
        )

        ids = result.get("ids", [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        matches: list[VectorMatch] = []
        for i, hash_seq in enumerate(ids):
            metadata = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            hash, _, seq = hash_seq.rpartition("_")
            matches.append(
                VectorMatch(
                    hash_seq=hash_seq,
                    hash=str(metadata.get("hash", hash)),
                    seq=int(metadata.get("seq", seq or 0)),
                    distance=float(distances[i]) if i < len(distances) else 2.0,
                )
            )

        matches.sort(key=lambda m: m.distance)
        return matches

    def count(self) -> int:
        """Number of stored embeddings."""
        return self._collection.count()

    def delete(self, ids: list[str]) -> None:
        """Delete embeddings by chunk key."""
        self._collection.delete(ids=ids)

    def delete_document(self, hash: str) -> None:
        """Delete every chunk embedding belonging to a document."""
        self._collection.delete(where={"hash": hash})

    def clear(self) -> None:
        """Clear all embeddings from the collection."""
        # ChromaDB doesn't have a direct clear method, so we delete and recreate
        self._client.delete_collection(name=self._collection_name)
        self._collection = self._open_collection()

    def close(self) -> None:
        """Close the vector store and release resources.

        This should be called when the store is no longer needed to
        release file handles and other system resources.
        """
        if self._client is not None:
            # PersistentClient has no close(); stop its internal systems instead
            systems = getattr(self._client, "_identifier_to_system", None)
            if systems:
                for system in list(systems.values()):
                    if hasattr(system, "stop"):
                        system.stop()

        self._collection = None  # type: ignore[assignment]
        self._client = None  # type: ignore[assignment]

        # Force garbage collection to release file handles
        gc.collect()
