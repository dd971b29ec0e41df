"""Hybrid search: lexical, vector and rank fusion."""

from qmd.search.errors import (
    DimensionMismatchError,
    EmbeddingGenerationError,
    InvalidOptionsError,
    NoResultsError,
    NotInitializedError,
    QueryExecutionError,
    SearchError,
    SearchTimeoutError,
    UnavailableError,
)
from qmd.search.hybrid import HybridSearcher
from qmd.search.lexical import LexicalSearcher
from qmd.search.models import (
    FallbackStrategy,
    FusedResult,
    HybridSearchOptions,
    LexicalResult,
    LexicalSearchOptions,
    ResultSource,
    SearchStats,
    VectorDiagnostics,
    VectorResult,
    VectorSearchOptions,
)
from qmd.search.ranking import RRFRanker
from qmd.search.vector import VectorSearcher

__all__ = [
    "DimensionMismatchError",
    "EmbeddingGenerationError",
    "FallbackStrategy",
    "FusedResult",
    "HybridSearchOptions",
    "HybridSearcher",
    "InvalidOptionsError",
    "LexicalResult",
    "LexicalSearchOptions",
    "LexicalSearcher",
    "NoResultsError",
    "NotInitializedError",
    "QueryExecutionError",
    "RRFRanker",
    "ResultSource",
    "SearchError",
    "SearchStats",
    "SearchTimeoutError",
    "UnavailableError",
    "VectorDiagnostics",
    "VectorResult",
    "VectorSearchOptions",
    "VectorSearcher",
]
