"""Search option and result types.

Candidate results are a tagged variant: every result carries a
``source`` tag and consumers dispatch on it.
"""

from dataclasses import dataclass, field
from enum import Enum

from qmd.constants.search import (
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_FUSED_LIMIT,
    DEFAULT_LEXICAL_LIMIT,
    DEFAULT_RRF_K,
    DEFAULT_VECTOR_LIMIT,
)


class ResultSource(str, Enum):
    """Which search method produced a result."""

    LEXICAL = "lexical"
    VECTOR = "vector"
    FUSED = "fused"


class FallbackStrategy(str, Enum):
    """How hybrid search treats a failing branch."""

    GRACEFUL = "graceful"
    FAIL = "fail"


@dataclass
class LexicalSearchOptions:
    """Options for lexical search."""

    collection_filter: str | None = None
    min_score: float | None = None
    limit: int = DEFAULT_LEXICAL_LIMIT


@dataclass
class VectorSearchOptions:
    """Options for vector search."""

    collection_filter: str | None = None
    limit: int = DEFAULT_VECTOR_LIMIT
    min_similarity: float | None = None


@dataclass
class HybridSearchOptions:
    """Options for hybrid search."""

    collection_filter: str | None = None
    limit: int = DEFAULT_FUSED_LIMIT
    min_score: float | None = None
    rrf_k: int = DEFAULT_RRF_K
    candidate_limit: int = DEFAULT_CANDIDATE_LIMIT
    enable_lexical: bool = True
    enable_vector: bool = True


@dataclass
class LexicalResult:
    """One document matched by full-text search.

    Attributes:
        score: Normalized 0-100 relevance (higher is better).
        raw_score: Native BM25 value (more negative is better).
        rank: 1-based position in the lexical result list.
    """

    hash: str
    title: str
    content: str
    path: str
    score: float
    raw_score: float
    rank: int
    snippet: str | None = None
    source: ResultSource = field(default=ResultSource.LEXICAL, init=False)


@dataclass
class VectorResult:
    """One document matched by nearest-neighbor search.

    Attributes:
        similarity: 0-100 similarity derived from cosine distance.
        distance: Cosine distance in [0, 2] of the best matching chunk.
        rank: 1-based position in the vector result list.
        seq: Sequence number of the best matching chunk.
    """

    hash: str
    title: str
    content: str
    path: str
    similarity: float
    distance: float
    rank: int
    seq: int = 0
    chunk_text: str | None = None
    source: ResultSource = field(default=ResultSource.VECTOR, init=False)


@dataclass
class FusedResult:
    """One document in the fused ranking."""

    hash: str
    title: str
    content: str
    path: str
    rrf_score: float
    snippet: str
    normalized_score: float = 0.0
    rank: int = 0
    lexical_score: float | None = None
    lexical_rank: int | None = None
    similarity: float | None = None
    vector_rank: int | None = None
    source: ResultSource = field(default=ResultSource.FUSED, init=False)

    @property
    def in_lexical(self) -> bool:
        return self.lexical_rank is not None

    @property
    def in_vector(self) -> bool:
        return self.vector_rank is not None

    @property
    def in_both(self) -> bool:
        """True when both search methods found this document."""
        return self.in_lexical and self.in_vector


CandidateResult = LexicalResult | VectorResult


@dataclass
class SearchStats:
    """Diagnostic summary of a fused result set."""

    total: int
    both_methods: int
    lexical_only: int
    vector_only: int
    avg_rrf_score: float
    max_rrf_score: float
    min_rrf_score: float


@dataclass
class VectorDiagnostics:
    """Health summary of the vector search path."""

    ready: bool
    vector_count: int
    embedder_available: bool
    active_model: str | None
    expected_dimensions: int
    error: str | None = None
