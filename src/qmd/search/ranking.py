"""Search result ranking with Reciprocal Rank Fusion."""

from qmd.constants.search import DEFAULT_RRF_K, SNIPPET_ELLIPSIS, SNIPPET_MAX_LENGTH
from qmd.search.models import FusedResult, LexicalResult, SearchStats, VectorResult


def synthesize_snippet(content: str, max_length: int = SNIPPET_MAX_LENGTH) -> str:
    """Build a display snippet by truncating content with an ellipsis."""
    if len(content) <= max_length:
        return content
    return content[:max_length] + SNIPPET_ELLIPSIS


class RRFRanker:
    """Combines lexical and vector search results using RRF.

    Reciprocal Rank Fusion scores documents based on their ranks in
    multiple result lists. Documents appearing in both lists get
    boosted scores.

    RRF_score(doc) = sum(1 / (k + rank_i)) for each list i containing doc
    """

    def __init__(self, k: int = DEFAULT_RRF_K, snippet_max_length: int = SNIPPET_MAX_LENGTH):
        """Initialize RRF ranker.

        Args:
            k: Ranking constant (default 60, standard for RRF).
            snippet_max_length: Length of snippets synthesized from content.
        """
        self._k = k
        self._snippet_max_length = snippet_max_length

    def score(self, rank: int) -> float:
        """Contribution of a 1-based rank in one list."""
        return 1 / (self._k + rank)

    def fuse(
        self,
        lexical_results: list[LexicalResult],
        vector_results: list[VectorResult],
    ) -> list[FusedResult]:
        """Merge two ranked lists into one fused ranking.

        Ties keep accumulation order: lexical documents in lexical order,
        then vector-only documents in vector order.

        Args:
            lexical_results: Results from full-text search, best first.
            vector_results: Results from vector search, best first.

        Returns:
            Fused results sorted by RRF score (highest first) with
            normalized scores and 1-based ranks assigned.
        """
        fused: dict[str, FusedResult] = {}

        for result in lexical_results:
            existing = fused.get(result.hash)
            if existing is not None:
                existing.rrf_score += self.score(result.rank)
                continue
            fused[result.hash] = FusedResult(
                hash=result.hash,
                title=result.title,
                content=result.content,
                path=result.path,
                rrf_score=self.score(result.rank),
                snippet=result.snippet
                or synthesize_snippet(result.content, self._snippet_max_length),
                lexical_score=result.score,
                lexical_rank=result.rank,
            )

        for result in vector_results:
            existing = fused.get(result.hash)
            if existing is not None:
                existing.rrf_score += self.score(result.rank)
                if existing.vector_rank is None:
                    existing.similarity = result.similarity
                    existing.vector_rank = result.rank
                continue
            fused[result.hash] = FusedResult(
                hash=result.hash,
                title=result.title,
                content=result.content,
                path=result.path,
                rrf_score=self.score(result.rank),
                snippet=synthesize_snippet(result.content, self._snippet_max_length),
                similarity=result.similarity,
                vector_rank=result.rank,
            )

        # sorted() is stable, so equal scores keep accumulation order
        ranked = sorted(fused.values(), key=lambda r: -r.rrf_score)
        normalize_scores(ranked)
        for rank, result in enumerate(ranked, start=1):
            result.rank = rank
        return ranked


def normalize_scores(results: list[FusedResult]) -> None:
    """Min-max normalize RRF scores to 0-100 within this result set.

    When every score is equal the range is treated as 1, so all results
    normalize to 0.
    """
    if not results:
        return
    scores = [r.rrf_score for r in results]
    low = min(scores)
    score_range = (max(scores) - low) or 1
    for result in results:
        result.normalized_score = (result.rrf_score - low) / score_range * 100


def search_stats(results: list[FusedResult]) -> SearchStats:
    """Count results by contributing method and summarize raw RRF scores."""
    if not results:
        return SearchStats(0, 0, 0, 0, 0.0, 0.0, 0.0)

    scores = [r.rrf_score for r in results]
    return SearchStats(
        total=len(results),
        both_methods=sum(1 for r in results if r.in_both),
        lexical_only=sum(1 for r in results if r.in_lexical and not r.in_vector),
        vector_only=sum(1 for r in results if r.in_vector and not r.in_lexical),
        avg_rrf_score=sum(scores) / len(scores),
        max_rrf_score=max(scores),
        min_rrf_score=min(scores),
    )
