"""Search endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from qmd.api.deps import get_hybrid_searcher, get_lexical_searcher, get_vector_searcher
from qmd.api.schemas import (
    DiagnosticsResponse,
    FusedResultItem,
    HybridSearchResponse,
    LexicalResultItem,
    LexicalSearchResponse,
    SearchStatsResponse,
)
from qmd.constants.search import (
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_FUSED_LIMIT,
    DEFAULT_LEXICAL_LIMIT,
    DEFAULT_RRF_K,
)
from qmd.search.errors import (
    InvalidOptionsError,
    NoResultsError,
    SearchError,
    UnavailableError,
)
from qmd.search.hybrid import HybridSearcher
from qmd.search.lexical import LexicalSearcher
from qmd.search.models import FusedResult, HybridSearchOptions, LexicalSearchOptions
from qmd.search.vector import VectorSearcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


def _http_error(e: SearchError) -> HTTPException:
    """Map a search error to the matching HTTP status."""
    if isinstance(e, InvalidOptionsError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, UnavailableError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(e, NoResultsError):
        status_code = status.HTTP_404_NOT_FOUND
    else:
        logger.error(f"Search failed ({e.code}): {e}")
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail={"code": e.code, "message": str(e)})


async def _hybrid_search(
    searcher: HybridSearcher,
    q: str,
    collection: str | None,
    limit: int,
    min_score: float | None,
    rrf_k: int,
    candidate_limit: int,
    lexical: bool,
    vector: bool,
) -> list[FusedResult]:
    options = HybridSearchOptions(
        collection_filter=collection,
        limit=limit,
        min_score=min_score,
        rrf_k=rrf_k,
        candidate_limit=candidate_limit,
        enable_lexical=lexical,
        enable_vector=vector,
    )
    try:
        return await searcher.search(q, options)
    except SearchError as e:
        raise _http_error(e) from e


@router.get("", response_model=HybridSearchResponse)
async def search(
    q: str = Query(..., min_length=1, description="Search query"),
    collection: str | None = Query(None, description="Restrict to one collection"),
    limit: int = Query(DEFAULT_FUSED_LIMIT, ge=1, le=100),
    min_score: float | None = Query(None, ge=0, le=100),
    rrf_k: int = Query(DEFAULT_RRF_K, description="RRF ranking constant"),
    candidate_limit: int = Query(DEFAULT_CANDIDATE_LIMIT, ge=1, le=500),
    lexical: bool = Query(True, description="Include full-text search"),
    vector: bool = Query(True, description="Include vector search"),
    searcher: HybridSearcher = Depends(get_hybrid_searcher),
) -> HybridSearchResponse:
    """Hybrid search fusing full-text and vector results."""
    results = await _hybrid_search(
        searcher, q, collection, limit, min_score, rrf_k, candidate_limit, lexical, vector
    )
    return HybridSearchResponse(
        query=q,
        results=[
            FusedResultItem(
                hash=r.hash,
                title=r.title,
                path=r.path,
                snippet=r.snippet,
                score=r.normalized_score,
                rrf_score=r.rrf_score,
                rank=r.rank,
                lexical_score=r.lexical_score,
                lexical_rank=r.lexical_rank,
                similarity=r.similarity,
                vector_rank=r.vector_rank,
            )
            for r in results
        ],
        total=len(results),
    )


@router.get("/lexical", response_model=LexicalSearchResponse)
async def search_lexical(
    q: str = Query(..., min_length=1, description="Search query"),
    collection: str | None = Query(None, description="Restrict to one collection"),
    limit: int = Query(DEFAULT_LEXICAL_LIMIT, ge=1, le=100),
    min_score: float | None = Query(None, ge=0, le=100),
    snippets: bool = Query(True, description="Include highlighted snippets"),
    searcher: LexicalSearcher = Depends(get_lexical_searcher),
) -> LexicalSearchResponse:
    """Full-text search only."""
    options = LexicalSearchOptions(collection_filter=collection, min_score=min_score, limit=limit)
    try:
        if snippets:
            results = await searcher.search_with_snippets(q, options)
        else:
            results = await searcher.search(q, options)
    except SearchError as e:
        raise _http_error(e) from e

    return LexicalSearchResponse(
        query=q,
        results=[
            LexicalResultItem(
                hash=r.hash,
                title=r.title,
                path=r.path,
                score=r.score,
                rank=r.rank,
                snippet=r.snippet,
            )
            for r in results
        ],
        total=len(results),
    )


@router.get("/stats", response_model=SearchStatsResponse)
async def search_stats(
    q: str = Query(..., min_length=1, description="Search query"),
    collection: str | None = Query(None, description="Restrict to one collection"),
    limit: int = Query(DEFAULT_FUSED_LIMIT, ge=1, le=100),
    rrf_k: int = Query(DEFAULT_RRF_K, description="RRF ranking constant"),
    candidate_limit: int = Query(DEFAULT_CANDIDATE_LIMIT, ge=1, le=500),
    searcher: HybridSearcher = Depends(get_hybrid_searcher),
) -> SearchStatsResponse:
    """Summarize which methods found the results of a hybrid search."""
    results = await _hybrid_search(
        searcher, q, collection, limit, None, rrf_k, candidate_limit, True, True
    )
    stats = searcher.search_stats(results)
    return SearchStatsResponse(
        query=q,
        total=stats.total,
        both_methods=stats.both_methods,
        lexical_only=stats.lexical_only,
        vector_only=stats.vector_only,
        avg_rrf_score=stats.avg_rrf_score,
        max_rrf_score=stats.max_rrf_score,
        min_rrf_score=stats.min_rrf_score,
    )


@router.get("/diagnostics", response_model=DiagnosticsResponse)
async def diagnostics(
    lexical: LexicalSearcher = Depends(get_lexical_searcher),
    vector: VectorSearcher = Depends(get_vector_searcher),
) -> DiagnosticsResponse:
    """Report whether each search path is usable."""
    vector_status = await vector.diagnostics()
    return DiagnosticsResponse(
        lexical_ready=lexical.is_index_ready(),
        indexed_documents=lexical.indexed_document_count(),
        vector_ready=vector_status.ready,
        vector_count=vector_status.vector_count,
        embedder_available=vector_status.embedder_available,
        active_model=vector_status.active_model,
        expected_dimensions=vector_status.expected_dimensions,
        error=vector_status.error,
    )
