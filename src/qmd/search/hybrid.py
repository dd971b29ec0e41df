"""Hybrid search combining lexical and vector results with RRF."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from qmd.constants.search import SNIPPET_MAX_LENGTH
from qmd.search.errors import (
    InvalidOptionsError,
    NoResultsError,
    NotInitializedError,
    SearchTimeoutError,
)
from qmd.search.lexical import LexicalSearcher
from qmd.search.models import (
    FallbackStrategy,
    FusedResult,
    HybridSearchOptions,
    LexicalResult,
    LexicalSearchOptions,
    SearchStats,
    VectorResult,
    VectorSearchOptions,
)
from qmd.search.ranking import RRFRanker, search_stats
from qmd.search.vector import VectorSearcher

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _disabled() -> list:
    return []


class HybridSearcher:
    """Runs lexical and vector search concurrently and fuses the rankings.

    Under the graceful strategy a failing branch is logged and treated as
    empty, so the surviving method still produces results. Under the fail
    strategy any branch error aborts the query.
    """

    def __init__(
        self,
        lexical_searcher: LexicalSearcher | None,
        vector_searcher: VectorSearcher | None,
        fallback_strategy: FallbackStrategy | str = FallbackStrategy.GRACEFUL,
        branch_timeout: float | None = None,
        snippet_max_length: int = SNIPPET_MAX_LENGTH,
    ):
        """Initialize the hybrid searcher.

        Args:
            lexical_searcher: Full-text searcher.
            vector_searcher: Embedding searcher.
            fallback_strategy: "graceful" or "fail".
            branch_timeout: Seconds each branch may run. None waits forever.
                Only the awaited parts of a branch are bounded; a synchronous
                SQLite query runs to completion before the timeout can fire.
            snippet_max_length: Length of snippets synthesized from content.
        """
        self._lexical = lexical_searcher
        self._vector = vector_searcher
        self.fallback_strategy = FallbackStrategy(fallback_strategy)
        self._branch_timeout = branch_timeout
        self._snippet_max_length = snippet_max_length

    async def search(
        self, query: str, options: HybridSearchOptions | None = None
    ) -> list[FusedResult]:
        """Search with both methods and fuse the results.

        Args:
            query: User query.
            options: Hybrid search options.

        Returns:
            Fused results, best first, truncated to ``options.limit``.

        Raises:
            InvalidOptionsError: If the options are contradictory. Raised
                before either branch runs.
            NoResultsError: In fail mode, when neither branch found anything.
            SearchError: In fail mode, the first branch error.
        """
        options = options or HybridSearchOptions()
        self._validate(options)

        lexical_task = (
            self._run_branch("lexical", self._search_lexical(query, options))
            if options.enable_lexical
            else _disabled()
        )
        vector_task = (
            self._run_branch("vector", self._search_vector(query, options))
            if options.enable_vector
            else _disabled()
        )
        outcomes = await asyncio.gather(lexical_task, vector_task, return_exceptions=True)

        lexical_results: list[LexicalResult] = self._resolve("lexical", outcomes[0])
        vector_results: list[VectorResult] = self._resolve("vector", outcomes[1])

        if not lexical_results and not vector_results:
            if self.fallback_strategy is FallbackStrategy.FAIL:
                raise NoResultsError(f"No results from either search method for {query!r}")
            return []

        ranker = RRFRanker(k=options.rrf_k, snippet_max_length=self._snippet_max_length)
        fused = ranker.fuse(lexical_results, vector_results)

        if options.min_score is not None:
            fused = [r for r in fused if r.normalized_score >= options.min_score]

        return fused[: options.limit]

    def search_stats(self, results: list[FusedResult]) -> SearchStats:
        """Summarize which methods contributed to a result set."""
        return search_stats(results)

    @staticmethod
    def _validate(options: HybridSearchOptions) -> None:
        if not options.enable_lexical and not options.enable_vector:
            raise InvalidOptionsError("At least one search method must be enabled")
        if options.rrf_k <= 0:
            raise InvalidOptionsError(f"rrf_k must be positive, got {options.rrf_k}")
        if options.limit <= 0:
            raise InvalidOptionsError(f"limit must be positive, got {options.limit}")
        if options.candidate_limit <= 0:
            raise InvalidOptionsError(
                f"candidate_limit must be positive, got {options.candidate_limit}"
            )

    async def _search_lexical(
        self, query: str, options: HybridSearchOptions
    ) -> list[LexicalResult]:
        if self._lexical is None:
            raise NotInitializedError("Lexical searcher not configured")
        return await self._lexical.search_with_snippets(
            query,
            LexicalSearchOptions(
                collection_filter=options.collection_filter,
                limit=options.candidate_limit,
            ),
        )

    async def _search_vector(
        self, query: str, options: HybridSearchOptions
    ) -> list[VectorResult]:
        if self._vector is None:
            raise NotInitializedError("Vector searcher not configured")
        return await self._vector.search(
            query,
            VectorSearchOptions(
                collection_filter=options.collection_filter,
                limit=options.candidate_limit,
            ),
        )

    async def _run_branch(self, name: str, branch: Awaitable[T]) -> T:
        if self._branch_timeout is None:
            return await branch
        try:
            return await asyncio.wait_for(branch, timeout=self._branch_timeout)
        except asyncio.TimeoutError as e:
            raise SearchTimeoutError(
                f"{name.capitalize()} search timed out after {self._branch_timeout}s"
            ) from e

    def _resolve(self, name: str, outcome: list | BaseException) -> list:
        if not isinstance(outcome, BaseException):
            return outcome
        if not isinstance(outcome, Exception) or self.fallback_strategy is FallbackStrategy.FAIL:
            raise outcome
        logger.warning(f"{name.capitalize()} search failed, continuing without it: {outcome}")
        return []
