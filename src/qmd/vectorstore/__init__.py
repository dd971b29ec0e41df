"""Vector store module for semantic search."""

from qmd.vectorstore.store import VectorMatch, VectorStore

__all__ = ["VectorMatch", "VectorStore"]
