"""Document indexing into the documents table and its FTS index."""

import asyncio
import hashlib
import logging
import re
import sqlite3
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from qmd.collections.manager import CollectionManager
from qmd.db.connection import Database
from qmd.vectorstore.store import VectorStore

logger = logging.getLogger(__name__)

HASH_LENGTH = 6
BINARY_THRESHOLD = 0.1
_HEADING_PATTERN = re.compile(r"^#+\s+(.+)$")
_PRINTABLE_CONTROLS = {"\t", "\n", "\r"}


class IndexerError(Exception):
    """Raised when a document cannot be indexed."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


@dataclass
class IndexedDocument:
    hash: str
    collection_id: int
    path: str
    title: str
    content: str
    created_at: int
    updated_at: int
    previous_hash: str | None = None

    @property
    def content_changed(self) -> bool:
        return self.previous_hash is not None and self.previous_hash != self.hash


@dataclass
class IndexingProgress:
    current: int
    total: int
    current_file: str


@dataclass
class IndexingResult:
    indexed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def hash_content(content: str) -> str:
    """Short content hash: first 6 hex characters of SHA-256."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def extract_title(content: str, filename: str) -> str:
    """Title from the first line if it is a markdown heading, else the filename.

    A leading frontmatter block is skipped.
    """
    lines = content.splitlines()
    i = 0
    while i < len(lines) and not lines[i].strip():
        i += 1
    if i < len(lines) and lines[i].strip() == "---":
        closing = next(
            (j for j in range(i + 1, len(lines)) if lines[j].strip() == "---"), None
        )
        if closing is not None:
            i = closing + 1
            while i < len(lines) and not lines[i].strip():
                i += 1

    if i < len(lines):
        match = _HEADING_PATTERN.match(lines[i].strip())
        if match:
            return match.group(1).strip()

    return re.sub(r"\.md$", "", filename, flags=re.IGNORECASE).strip()


def is_binary_content(content: str) -> bool:
    """More than 10% control characters (other than tab and newlines) means binary."""
    if not content:
        return False
    non_printable = sum(1 for c in content if ord(c) < 32 and c not in _PRINTABLE_CONTROLS)
    return non_printable / len(content) > BINARY_THRESHOLD


def _now_ms() -> int:
    return int(time.time() * 1000)


class DocumentIndexer:
    """Upserts documents by path and debounces re-indexing of changed files.

    Pending re-index tasks are held per instance and cancelled by close().
    When a vector store is given, embeddings of replaced content are purged
    from it as well.
    """

    def __init__(
        self,
        db: Database,
        collections: CollectionManager,
        vectorstore: VectorStore | None = None,
        debounce_ms: int = 500,
        batch_size: int = 50,
        large_file_bytes: int = 10 * 1024 * 1024,
    ):
        self._db = db
        self._collections = collections
        self._vectorstore = vectorstore
        self.debounce_ms = debounce_ms
        self.batch_size = batch_size
        self.large_file_bytes = large_file_bytes
        self._pending: dict[str, asyncio.Task] = {}

    def index_document(self, path: str, content: str, collection_id: int) -> IndexedDocument:
        """Insert or update the document stored at ``path``.

        Args:
            path: Source path; one active document per path.
            content: Full document text.
            collection_id: Owning collection.

        Returns:
            The stored document. ``previous_hash`` is set when the path was
            already indexed.

        Raises:
            IndexerError: If the content looks binary or its hash collides
                with another path.
        """
        with self._db.transaction():
            return self._write_document(path, content, collection_id)

    def index_collection(
        self,
        name: str,
        files: Iterable[tuple[str, str]] | None = None,
        on_progress: Callable[[IndexingProgress], None] | None = None,
    ) -> IndexingResult:
        """Index every file of a collection in batched transactions.

        Args:
            name: Collection name.
            files: (path, content) pairs. Read from the collection directory
                when omitted.
            on_progress: Called before each file.

        Returns:
            Counts of indexed and skipped files, with per-file errors.

        Raises:
            IndexerError: If the collection does not exist.
        """
        collection = self._collections.get_collection(name)
        if collection is None:
            raise IndexerError(f'Collection "{name}" not found.', "NOT_FOUND")

        entries = list(files) if files is not None else self._read_files(name)
        result = IndexingResult()

        for start in range(0, len(entries), self.batch_size):
            batch = entries[start : start + self.batch_size]
            with self._db.transaction():
                for offset, (path, content) in enumerate(batch):
                    if on_progress:
                        on_progress(IndexingProgress(start + offset + 1, len(entries), path))
                    if content is None:
                        result.skipped += 1
                        continue
                    try:
                        self._write_document(path, content, collection.id)
                        result.indexed += 1
                    except IndexerError as e:
                        if e.code == "INVALID_FILE":
                            result.skipped += 1
                        else:
                            result.errors.append(f"{path}: {e}")

        return result

    def remove_document(self, path: str) -> bool:
        """Soft-delete the document at ``path``. Returns False if none existed."""
        with self._db.transaction():
            cursor = self._db.execute(
                "UPDATE documents SET active = 0, updated_at = ? WHERE path = ?",
                (_now_ms(), path),
            )
        return cursor.rowcount > 0

    def rename_document(self, old_path: str, new_path: str) -> bool:
        """Move a document to a new path. Returns False if none existed.

        Raises:
            IndexerError: If a document is already stored at ``new_path``.
        """
        try:
            with self._db.transaction():
                cursor = self._db.execute(
                    "UPDATE documents SET path = ?, updated_at = ? WHERE path = ?",
                    (new_path, _now_ms(), old_path),
                )
        except sqlite3.IntegrityError as e:
            raise IndexerError(
                f"Cannot rename {old_path}: {new_path} is already indexed", "DUPLICATE"
            ) from e
        return cursor.rowcount > 0

    def get_document(self, path: str) -> IndexedDocument | None:
        """Active document stored at ``path``."""
        row = self._db.execute(
            """
            SELECT hash, collection_id, path, title, content, created_at, updated_at
            FROM documents WHERE path = ? AND active = 1
            """,
            (path,),
        ).fetchone()
        return IndexedDocument(**dict(row)) if row else None

    def schedule_reindex(self, path: str, content: str, collection_id: int) -> None:
        """Re-index ``path`` after the debounce delay.

        A newer call for the same path replaces the pending one. Must be
        called from a running event loop.
        """
        existing = self._pending.pop(path, None)
        if existing is not None and not existing.done():
            existing.cancel()
            logger.debug(f"Replaced pending reindex of {path}")

        task = asyncio.get_running_loop().create_task(
            self._debounced_reindex(path, content, collection_id)
        )
        self._pending[path] = task
        task.add_done_callback(lambda t: self._forget(path, t))
        logger.debug(f"Scheduled reindex of {path} in {self.debounce_ms}ms")

    @property
    def pending_paths(self) -> list[str]:
        """Paths with a re-index still waiting to run."""
        return [path for path, task in self._pending.items() if not task.done()]

    async def close(self) -> None:
        """Cancel every pending re-index and wait for the tasks to finish."""
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"Cancelled {len(tasks)} pending reindex task(s)")

    async def _debounced_reindex(self, path: str, content: str, collection_id: int) -> None:
        await asyncio.sleep(self.debounce_ms / 1000)
        try:
            self.index_document(path, content, collection_id)
        except (IndexerError, sqlite3.Error) as e:
            logger.error(f"Failed to reindex {path}: {e}")

    def _forget(self, path: str, task: asyncio.Task) -> None:
        if self._pending.get(path) is task:
            del self._pending[path]

    def _write_document(self, path: str, content: str, collection_id: int) -> IndexedDocument:
        if is_binary_content(content):
            raise IndexerError(f"File appears to be binary: {path}", "INVALID_FILE")
        if len(content.encode("utf-8")) > self.large_file_bytes:
            logger.warning(f"Indexing large file {path} ({len(content)} characters)")

        title = extract_title(content, Path(path).name)
        hash = hash_content(content)
        now = _now_ms()

        existing = self._db.execute(
            "SELECT hash, created_at FROM documents WHERE path = ?", (path,)
        ).fetchone()
        previous_hash = existing["hash"] if existing else None

        try:
            self._db.execute(
                """
                INSERT INTO documents
                    (hash, collection_id, path, title, content, active,
                     created_at, updated_at, indexed_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    hash = excluded.hash,
                    collection_id = excluded.collection_id,
                    title = excluded.title,
                    content = excluded.content,
                    active = 1,
                    updated_at = excluded.updated_at,
                    indexed_at = excluded.indexed_at
                """,
                (hash, collection_id, path, title, content, now, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise IndexerError(
                f"Content of {path} duplicates another indexed document", "DUPLICATE"
            ) from e

        if previous_hash is not None and previous_hash != hash:
            # Chunks of the old version no longer describe this path
            self._db.execute("DELETE FROM content_vectors WHERE hash = ?", (previous_hash,))
            if self._vectorstore is not None:
                self._vectorstore.delete_document(previous_hash)

        return IndexedDocument(
            hash=hash,
            collection_id=collection_id,
            path=path,
            title=title,
            content=content,
            created_at=existing["created_at"] if existing else now,
            updated_at=now,
            previous_hash=previous_hash,
        )

    def _read_files(self, name: str) -> list[tuple[str, str | None]]:
        entries: list[tuple[str, str | None]] = []
        for file in self._collections.list_files(name):
            try:
                entries.append((str(file), file.read_text(encoding="utf-8")))
            except UnicodeDecodeError:
                entries.append((str(file), None))
            except OSError as e:
                logger.warning(f"Could not read {file}: {e}")
        return entries
