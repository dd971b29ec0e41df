"""Search, fusion and vector store constants.

Hybrid search combines ChromaDB cosine-distance KNN with SQLite FTS5 BM25
search, then fuses both rankings with Reciprocal Rank Fusion.
"""

# =============================================================================
# Result Limits
# =============================================================================
# Each searcher fetches a candidate pool larger than the final fused limit so
# that fusion has enough material to re-rank.

DEFAULT_LEXICAL_LIMIT = 20
DEFAULT_VECTOR_LIMIT = 20
DEFAULT_FUSED_LIMIT = 10
DEFAULT_CANDIDATE_LIMIT = 20

# =============================================================================
# Reciprocal Rank Fusion
# =============================================================================
# score(d) = sum(1 / (k + rank_i)). Larger k flattens the score curve.

DEFAULT_RRF_K = 60

# =============================================================================
# Snippets
# =============================================================================
# FTS5 snippet() arguments: content column index, highlight markers, ellipsis
# and token budget. Synthesized snippets truncate content to a fixed length.

SNIPPET_COLUMN = 2
SNIPPET_OPEN_MARK = "<mark>"
SNIPPET_CLOSE_MARK = "</mark>"
SNIPPET_ELLIPSIS = "..."
SNIPPET_MAX_TOKENS = 32
SNIPPET_MAX_LENGTH = 200

# =============================================================================
# Vector Index
# =============================================================================
# Cosine distance as reported by the vector index ranges from 0 (identical)
# to 2 (opposite).

EMBEDDING_DIMENSIONS = 768
MIN_COSINE_DISTANCE = 0.0
MAX_COSINE_DISTANCE = 2.0
VECTOR_COLLECTION_NAME = "qmd_vectors"
