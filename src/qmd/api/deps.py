"""FastAPI dependency injection functions."""

from functools import lru_cache

from fastapi import Depends

from qmd.config import Config, load_settings
from qmd.db.connection import Database
from qmd.db.migrations import run_migrations
from qmd.embeddings.embedder import OllamaEmbedder
from qmd.search.hybrid import HybridSearcher
from qmd.search.lexical import LexicalSearcher
from qmd.search.vector import VectorSearcher
from qmd.vectorstore.store import VectorStore


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


_db_instance: Database | None = None
_vectorstore_instance: VectorStore | None = None
_embedder_instance: OllamaEmbedder | None = None


def get_db() -> Database:
    """Get database connection with migrations applied."""
    global _db_instance

    settings = get_settings()

    # Check if cached connection is stale (db file was deleted)
    if _db_instance is not None and not settings.db_path.exists():
        _db_instance.close()
        _db_instance = None

    if _db_instance is None:
        _db_instance = Database(settings.db_path)
        run_migrations(_db_instance)
    return _db_instance


def _reset_db_instance() -> None:
    """Reset database instance (for testing only)."""
    global _db_instance
    if _db_instance is not None:
        _db_instance.close()
        _db_instance = None


def get_vectorstore() -> VectorStore:
    """Get the chunk embedding store."""
    global _vectorstore_instance
    if _vectorstore_instance is None:
        settings = get_settings()
        settings.chroma_path.mkdir(parents=True, exist_ok=True)
        _vectorstore_instance = VectorStore(settings.chroma_path)
    return _vectorstore_instance


def _reset_vectorstore_instance() -> None:
    """Reset vectorstore instance (for testing only)."""
    global _vectorstore_instance
    if _vectorstore_instance is not None:
        _vectorstore_instance.close()
        _vectorstore_instance = None


def get_embedder() -> OllamaEmbedder:
    """Get the Ollama embedding client."""
    global _embedder_instance
    if _embedder_instance is None:
        settings = get_settings()
        _embedder_instance = OllamaEmbedder(
            base_url=settings.ollama_endpoint,
            model=settings.embedding.model,
            fallback_model=settings.embedding.fallback_model,
            timeout=settings.embedding.timeout_seconds,
            check_timeout=settings.embedding.check_timeout_seconds,
            expected_dimensions=settings.embedding.dimensions,
        )
    return _embedder_instance


def _reset_embedder_instance() -> None:
    """Reset embedder instance (for testing only)."""
    global _embedder_instance
    _embedder_instance = None


def get_lexical_searcher(db: Database = Depends(get_db)) -> LexicalSearcher:
    settings = get_settings()
    return LexicalSearcher(db, snippet_tokens=settings.search.snippet_tokens)


def get_vector_searcher(
    db: Database = Depends(get_db),
    vectorstore: VectorStore = Depends(get_vectorstore),
    embedder: OllamaEmbedder = Depends(get_embedder),
) -> VectorSearcher:
    settings = get_settings()
    return VectorSearcher(db, vectorstore, embedder, settings.embedding.dimensions)


def get_hybrid_searcher(
    lexical: LexicalSearcher = Depends(get_lexical_searcher),
    vector: VectorSearcher = Depends(get_vector_searcher),
) -> HybridSearcher:
    settings = get_settings()
    return HybridSearcher(
        lexical,
        vector,
        fallback_strategy=settings.search.fallback_strategy,
        branch_timeout=settings.search.branch_timeout_seconds,
        snippet_max_length=settings.search.snippet_max_length,
    )


def reset_instances() -> None:
    """Close and drop every cached instance."""
    _reset_db_instance()
    _reset_vectorstore_instance()
    _reset_embedder_instance()
