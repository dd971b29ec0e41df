"""Document indexing pipeline."""

from qmd.indexing.indexer import (
    DocumentIndexer,
    IndexedDocument,
    IndexerError,
    IndexingResult,
    extract_title,
    hash_content,
    is_binary_content,
)

__all__ = [
    "DocumentIndexer",
    "IndexedDocument",
    "IndexerError",
    "IndexingResult",
    "extract_title",
    "hash_content",
    "is_binary_content",
]
