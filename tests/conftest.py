"""Shared pytest fixtures for all tests.

These fixtures properly clean up resources to prevent file descriptor leaks.
"""

import gc
import math
import os

# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest

from qmd.collections.manager import CollectionManager
from qmd.db.connection import Database
from qmd.db.migrations import run_migrations
from qmd.embeddings.chunker import DocumentChunker
from qmd.indexing.indexer import DocumentIndexer
from qmd.vectorstore.store import VectorStore

DIMENSIONS = 768


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Clean up resources after each test to prevent file descriptor leaks.

    This runs automatically after every test to help garbage collect
    any lingering ChromaDB or SQLite connections.
    """
    yield
    # Force garbage collection to release file handles
    gc.collect()


@pytest.fixture
def temp_vectorstore(tmp_path):
    """Create a temporary vector store that cleans up properly.

    This fixture should be used instead of creating VectorStore instances
    directly in tests to ensure ChromaDB connections are released.
    """
    index_path = tmp_path / "index"
    index_path.mkdir()
    store = VectorStore(index_path)
    yield store
    # Clean up to release file handles
    store.close()
    gc.collect()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database with the production schema."""
    db = Database(tmp_path / "test.db")
    run_migrations(db)
    yield db
    # Clean up to release file handles
    db.close()
    gc.collect()


@pytest.fixture
def notes_dir(tmp_path):
    """Directory backing the default test collection."""
    directory = tmp_path / "notes"
    directory.mkdir()
    return directory


@pytest.fixture
def collections(temp_db):
    return CollectionManager(temp_db)


@pytest.fixture
def indexer(temp_db, collections):
    return DocumentIndexer(temp_db, collections, debounce_ms=10)


@pytest.fixture
def notes_collection(collections, notes_dir):
    return collections.add_collection("notes", notes_dir)


@pytest.fixture
def indexed_docs(indexer, notes_collection):
    """The two-document corpus used across search tests."""
    doc_a = indexer.index_document(
        "notes/cats.md", "Cats are mammals. Dogs are mammals too.", notes_collection.id
    )
    doc_b = indexer.index_document(
        "notes/stocks.md", "The stock market rose today.", notes_collection.id
    )
    return doc_a, doc_b


def unit_vector(index: int, dimensions: int = DIMENSIONS) -> list[float]:
    """Vector with a single 1.0 at ``index``."""
    vector = [0.0] * dimensions
    vector[index % dimensions] = 1.0
    return vector


def blend(a: list[float], b: list[float], weight: float) -> list[float]:
    """Normalized ``(1 - weight) * a + weight * b``."""
    mixed = [(1 - weight) * x + weight * y for x, y in zip(a, b)]
    norm = math.sqrt(sum(v * v for v in mixed)) or 1.0
    return [v / norm for v in mixed]


class FakeEmbedder:
    """In-memory stand-in for OllamaEmbedder.

    Texts listed in ``vectors`` get that vector; anything else gets a
    vector derived from the text length.
    """

    def __init__(self, vectors=None, available=True, dimensions=DIMENSIONS, error=None):
        self.vectors = dict(vectors or {})
        self.available = available
        self.dimensions = dimensions
        self.error = error
        self.calls: list[str] = []
        self.model = "fake-embed"

    @property
    def active_model(self):
        return self.model if self.available else None

    async def is_available(self, refresh: bool = False) -> bool:
        return self.available

    def install_instructions(self) -> str:
        return "To install the embedding model, run:\n  ollama pull fake-embed"

    async def generate_embedding(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return list(self.vectors[text])
        return unit_vector(len(text), self.dimensions)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def chunker():
    return DocumentChunker()


@pytest.fixture
def make_vector():
    """Factory for one-hot test vectors."""
    return unit_vector


@pytest.fixture
def blend_vectors():
    return blend


@pytest.fixture
def make_embedder():
    """Factory for FakeEmbedder instances with custom behavior."""
    return FakeEmbedder
