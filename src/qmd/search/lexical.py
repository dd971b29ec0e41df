"""Full-text search over the SQLite FTS5 index with BM25 ranking."""

import logging
import math
import re
import sqlite3
from typing import Any

from qmd.constants.search import (
    SNIPPET_CLOSE_MARK,
    SNIPPET_COLUMN,
    SNIPPET_ELLIPSIS,
    SNIPPET_MAX_TOKENS,
    SNIPPET_OPEN_MARK,
)
from qmd.db.connection import Database
from qmd.search.errors import NotInitializedError, QueryExecutionError
from qmd.search.models import LexicalResult, LexicalSearchOptions

logger = logging.getLogger(__name__)

# Quotes, wildcards, boolean operators or a column filter mean the user wrote FTS5 syntax
_EXPLICIT_SYNTAX = re.compile(
    r'["*?]|(?:^|\s)(AND|OR|NOT)(?:\s|$)|(?:title|content):', re.IGNORECASE
)
# Characters that are not valid in an FTS5 bareword
_SPECIAL_CHARS = re.compile(r"[(){}\[\]^:\-.,;!@#$%&+=<>/\\|~`']")
_WHITESPACE = re.compile(r"\s+")


def sanitize_query(query: str) -> str:
    """Prepare a raw user query for FTS5 MATCH.

    Queries that already use FTS5 syntax (including any double quote) are
    passed through unchanged. Otherwise syntactically significant characters
    are replaced with spaces and whitespace is collapsed.

    Args:
        query: Raw user query.

    Returns:
        Query safe to hand to MATCH, or "" when nothing searchable remains.
    """
    if not query or not isinstance(query, str):
        return ""

    sanitized = query.strip()
    if not sanitized:
        return ""

    if _EXPLICIT_SYNTAX.search(sanitized):
        return sanitized

    sanitized = _SPECIAL_CHARS.sub(" ", sanitized)
    return _WHITESPACE.sub(" ", sanitized).strip()


def normalize_bm25(raw_score: float) -> float:
    """Map a BM25 score (more negative is better) onto 0-100 (higher is better).

    Only meaningful for ordering within one result set; the scale is not
    comparable across queries.
    """
    return (1 / (1 + abs(raw_score))) * 100


def denormalize_to_bm25(min_score: float) -> float:
    """Convert a normalized score threshold into a maximum ``abs(bm25)``.

    Args:
        min_score: Minimum normalized score (0-100).

    Returns:
        Largest raw magnitude that still satisfies ``min_score``. ``inf``
        (no filter) when ``min_score <= 0`` and ``0`` when ``min_score >= 100``.
    """
    if min_score <= 0:
        return math.inf
    if min_score >= 100:
        return 0.0
    return (100 / min_score) - 1


class LexicalSearcher:
    """BM25 keyword search over the documents_fts index."""

    def __init__(self, db: Database | None, snippet_tokens: int = SNIPPET_MAX_TOKENS):
        """Initialize the searcher.

        Args:
            db: Database holding the documents and documents_fts tables.
            snippet_tokens: Token budget for highlighted snippets.

        Raises:
            NotInitializedError: If no database is given.
        """
        if db is None:
            raise NotInitializedError("Database not initialized")
        self._db = db
        self._snippet_tokens = snippet_tokens

    async def search(
        self, query: str, options: LexicalSearchOptions | None = None
    ) -> list[LexicalResult]:
        """Rank active documents by BM25 without extracting snippets.

        Args:
            query: User query; FTS5 syntax is honored when present.
            options: Collection filter, minimum score and limit.

        Returns:
            Results ordered best first with 1-based ranks.

        Raises:
            QueryExecutionError: If the index rejects the query.
        """
        return self._run(query, options or LexicalSearchOptions(), with_snippets=False)

    async def search_with_snippets(
        self, query: str, options: LexicalSearchOptions | None = None
    ) -> list[LexicalResult]:
        """Like search(), but each result carries a highlighted snippet."""
        return self._run(query, options or LexicalSearchOptions(), with_snippets=True)

    async def search_titles(
        self, query: str, options: LexicalSearchOptions | None = None
    ) -> list[LexicalResult]:
        """Search document titles only."""
        return await self._search_column("title", query, options)

    async def search_content(
        self, query: str, options: LexicalSearchOptions | None = None
    ) -> list[LexicalResult]:
        """Search document bodies only."""
        return await self._search_column("content", query, options)

    def indexed_document_count(self) -> int:
        """Count active documents visible to the index (0 if it is not built)."""
        try:
            row = self._db.execute(
                """
                SELECT COUNT(*) FROM documents_fts
                JOIN documents d ON d.rowid = documents_fts.rowid
                WHERE d.active = 1
                """
            ).fetchone()
        except sqlite3.OperationalError:
            return 0
        return row[0] if row else 0

    def is_index_ready(self) -> bool:
        """Check whether the FTS index exists and is queryable."""
        try:
            self._db.execute("SELECT 1 FROM documents_fts LIMIT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    async def _search_column(
        self, column: str, query: str, options: LexicalSearchOptions | None
    ) -> list[LexicalResult]:
        sanitized = sanitize_query(query)
        if not sanitized:
            return []
        if _EXPLICIT_SYNTAX.search(sanitized):
            restricted = f"{column}:({sanitized})"
        else:
            restricted = " ".join(f"{column}:{term}" for term in sanitized.split())
        return await self.search_with_snippets(restricted, options)

    def _run(
        self, query: str, options: LexicalSearchOptions, with_snippets: bool
    ) -> list[LexicalResult]:
        sanitized = sanitize_query(query)
        if not sanitized:
            return []

        threshold = (
            denormalize_to_bm25(options.min_score) if options.min_score is not None else math.inf
        )

        columns = "d.hash, d.title, d.content, d.path, bm25(documents_fts) AS bm25_score"
        params: list[Any] = []
        if with_snippets:
            columns += f", snippet(documents_fts, {SNIPPET_COLUMN}, ?, ?, ?, ?) AS snippet"
            params.extend(
                [SNIPPET_OPEN_MARK, SNIPPET_CLOSE_MARK, SNIPPET_ELLIPSIS, self._snippet_tokens]
            )

        sql = f"""
            SELECT {columns}
            FROM documents_fts
            JOIN documents d ON d.rowid = documents_fts.rowid
        """
        if options.collection_filter:
            sql += " JOIN collections c ON d.collection_id = c.id"
        sql += " WHERE documents_fts MATCH ? AND d.active = 1"
        params.append(sanitized)

        if options.collection_filter:
            sql += " AND c.name = ?"
            params.append(options.collection_filter)
        if not math.isinf(threshold):
            sql += " AND abs(bm25(documents_fts)) <= ?"
            params.append(threshold)

        sql += " ORDER BY bm25_score ASC LIMIT ?"
        params.append(options.limit)

        try:
            rows = self._db.execute(sql, tuple(params)).fetchall()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                logger.debug(f"FTS index not built yet: {e}")
                return []
            raise QueryExecutionError(f"Full-text search failed: {e}") from e
        except sqlite3.Error as e:
            raise QueryExecutionError(f"Full-text search failed: {e}") from e

        results = []
        for rank, row in enumerate(rows, start=1):
            raw = row["bm25_score"] or 0.0
            results.append(
                LexicalResult(
                    hash=row["hash"],
                    title=row["title"],
                    content=row["content"],
                    path=row["path"],
                    score=normalize_bm25(raw),
                    raw_score=raw,
                    rank=rank,
                    snippet=row["snippet"] if with_snippets else None,
                )
            )
        return results
