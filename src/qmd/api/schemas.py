"""Pydantic schemas for API responses."""

from pydantic import BaseModel


class FusedResultItem(BaseModel):
    """One result of a hybrid search."""

    hash: str
    title: str
    path: str
    snippet: str
    score: float
    rrf_score: float
    rank: int
    lexical_score: float | None = None
    lexical_rank: int | None = None
    similarity: float | None = None
    vector_rank: int | None = None


class HybridSearchResponse(BaseModel):
    """Hybrid search response with results."""

    query: str
    results: list[FusedResultItem]
    total: int


class LexicalResultItem(BaseModel):
    """One result of a full-text search."""

    hash: str
    title: str
    path: str
    score: float
    rank: int
    snippet: str | None = None


class LexicalSearchResponse(BaseModel):
    """Full-text search response with results."""

    query: str
    results: list[LexicalResultItem]
    total: int


class SearchStatsResponse(BaseModel):
    """Which methods contributed to a hybrid result set."""

    query: str
    total: int
    both_methods: int
    lexical_only: int
    vector_only: int
    avg_rrf_score: float
    max_rrf_score: float
    min_rrf_score: float


class DiagnosticsResponse(BaseModel):
    """Health of both search paths."""

    lexical_ready: bool
    indexed_documents: int
    vector_ready: bool
    vector_count: int
    embedder_available: bool
    active_model: str | None
    expected_dimensions: int
    error: str | None = None
