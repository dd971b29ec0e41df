"""Typed errors raised by the search subsystem."""


class SearchError(Exception):
    """Base exception for search errors.

    Attributes:
        code: Stable machine-readable error kind.
    """

    code = "SEARCH_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotInitializedError(SearchError):
    """Raised when a searcher has no usable backing index or collaborator."""

    code = "NOT_INITIALIZED"


class InvalidOptionsError(SearchError):
    """Raised when caller-supplied search options contradict each other."""

    code = "INVALID_OPTIONS"


class DimensionMismatchError(InvalidOptionsError):
    """Raised when an embedding does not have the expected dimension."""

    code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class UnavailableError(SearchError):
    """Raised when the embedding service is unreachable or its model is missing."""

    code = "EMBEDDING_UNAVAILABLE"


class EmbeddingGenerationError(SearchError):
    """Raised when the embedding service fails to embed the query."""

    code = "EMBEDDING_FAILED"


class QueryExecutionError(SearchError):
    """Raised when an index rejects or fails on a well-formed query."""

    code = "QUERY_ERROR"


class SearchTimeoutError(SearchError):
    """Raised when a search branch or embedding call exceeds its deadline."""

    code = "TIMEOUT"


class NoResultsError(SearchError):
    """Raised in strict mode when neither search method found anything."""

    code = "NO_RESULTS"
