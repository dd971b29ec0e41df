"""Named document collections backed by the collections table."""

import re
import time
from dataclasses import dataclass
from pathlib import Path

from qmd.db.connection import Database
from qmd.vectorstore.store import VectorStore

_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_GLOB_LENGTH = 256
DEFAULT_GLOB = "**/*.md"


class CollectionError(Exception):
    """Raised when a collection operation is invalid."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


@dataclass
class Collection:
    id: int
    name: str
    path: str
    glob_pattern: str
    created_at: int
    updated_at: int


@dataclass
class CollectionStats:
    file_count: int
    total_size: int
    document_count: int
    chunk_count: int


def is_valid_collection_name(name: str) -> bool:
    """Collection names are kebab-case: lowercase letters, digits and hyphens."""
    return bool(name) and _NAME_PATTERN.match(name) is not None


def is_valid_glob_pattern(pattern: str) -> bool:
    """Accept comma-separated globs; a leading "!" excludes matches."""
    if not pattern or len(pattern) > MAX_GLOB_LENGTH:
        return False
    parts = [p.strip() for p in pattern.split(",") if p.strip()]
    return bool(parts) and any(not p.startswith("!") for p in parts)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CollectionManager:
    """Creates, renames and removes collections, and lists their files.

    When a vector store is given, removing a collection also purges the
    embeddings of its documents.
    """

    def __init__(self, db: Database, vectorstore: VectorStore | None = None):
        self._db = db
        self._vectorstore = vectorstore

    def add_collection(
        self, name: str, path: str | Path, glob_pattern: str = DEFAULT_GLOB
    ) -> Collection:
        """Register a directory as a collection.

        Args:
            name: Kebab-case collection name.
            path: Directory holding the collection's files.
            glob_pattern: Which files belong to the collection.

        Returns:
            The new collection.

        Raises:
            CollectionError: If the name, path or pattern is invalid, or the
                name is taken.
        """
        if not is_valid_collection_name(name):
            raise CollectionError(
                f'Invalid collection name: "{name}". '
                "Use kebab-case (lowercase letters, numbers, hyphens).",
                "INVALID_NAME",
            )
        if self.get_collection(name) is not None:
            raise CollectionError(f'Collection "{name}" already exists.', "DUPLICATE")

        directory = self._validate_path(path)
        if not is_valid_glob_pattern(glob_pattern):
            raise CollectionError(f'Invalid glob pattern: "{glob_pattern}".', "INVALID_PATTERN")

        now = _now_ms()
        with self._db.transaction():
            cursor = self._db.execute(
                """
                INSERT INTO collections (name, path, glob_pattern, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, directory, glob_pattern, now, now),
            )
        return Collection(
            id=cursor.lastrowid or 0,
            name=name,
            path=directory,
            glob_pattern=glob_pattern,
            created_at=now,
            updated_at=now,
        )

    def remove_collection(self, name: str) -> list[str]:
        """Delete a collection with its documents and chunk rows.

        Returns:
            Hashes of the deleted documents, so callers can purge their
            embeddings from the vector store.
        """
        collection = self._require(name)
        hashes = [
            row["hash"]
            for row in self._db.execute(
                "SELECT hash FROM documents WHERE collection_id = ?", (collection.id,)
            ).fetchall()
        ]
        with self._db.transaction():
            self._db.execute(
                """
                DELETE FROM content_vectors
                WHERE hash IN (SELECT hash FROM documents WHERE collection_id = ?)
                """,
                (collection.id,),
            )
            self._db.execute("DELETE FROM documents WHERE collection_id = ?", (collection.id,))
            self._db.execute("DELETE FROM collections WHERE id = ?", (collection.id,))
        if self._vectorstore is not None:
            for hash in hashes:
                self._vectorstore.delete_document(hash)
        return hashes

    def rename_collection(self, old_name: str, new_name: str) -> None:
        """Rename a collection.

        Raises:
            CollectionError: If the new name is invalid or taken, or the
                collection does not exist.
        """
        if not is_valid_collection_name(new_name):
            raise CollectionError(
                f'Invalid collection name: "{new_name}". Use kebab-case.', "INVALID_NAME"
            )
        collection = self._require(old_name)
        if self.get_collection(new_name) is not None:
            raise CollectionError(f'Collection "{new_name}" already exists.', "DUPLICATE")

        with self._db.transaction():
            self._db.execute(
                "UPDATE collections SET name = ?, updated_at = ? WHERE id = ?",
                (new_name, _now_ms(), collection.id),
            )

    def list_collections(self) -> list[Collection]:
        """All collections, ordered by name."""
        rows = self._db.execute(
            """
            SELECT id, name, path, glob_pattern, created_at, updated_at
            FROM collections ORDER BY name
            """
        ).fetchall()
        return [Collection(**dict(row)) for row in rows]

    def get_collection(self, name: str) -> Collection | None:
        row = self._db.execute(
            """
            SELECT id, name, path, glob_pattern, created_at, updated_at
            FROM collections WHERE name = ?
            """,
            (name,),
        ).fetchone()
        return Collection(**dict(row)) if row else None

    def update_collection(
        self, name: str, path: str | Path | None = None, glob_pattern: str | None = None
    ) -> Collection:
        """Change a collection's directory or glob pattern."""
        collection = self._require(name)
        if path is not None:
            collection.path = self._validate_path(path)
        if glob_pattern is not None:
            if not is_valid_glob_pattern(glob_pattern):
                raise CollectionError(
                    f'Invalid glob pattern: "{glob_pattern}".', "INVALID_PATTERN"
                )
            collection.glob_pattern = glob_pattern

        collection.updated_at = _now_ms()
        with self._db.transaction():
            self._db.execute(
                "UPDATE collections SET path = ?, glob_pattern = ?, updated_at = ? WHERE id = ?",
                (collection.path, collection.glob_pattern, collection.updated_at, collection.id),
            )
        return collection

    def list_files(self, name: str) -> list[Path]:
        """Files under the collection directory matching its glob pattern."""
        collection = self._require(name)
        root = Path(collection.path)
        patterns = [p.strip() for p in collection.glob_pattern.split(",") if p.strip()]

        included: set[Path] = set()
        excluded: set[Path] = set()
        for pattern in patterns:
            target = excluded if pattern.startswith("!") else included
            target.update(p for p in root.glob(pattern.lstrip("!")) if p.is_file())
        return sorted(included - excluded)

    def collection_stats(self, name: str) -> CollectionStats:
        """File, document and chunk counts for a collection."""
        collection = self._require(name)
        files = self.list_files(name)
        document_count = self._db.execute(
            "SELECT COUNT(*) FROM documents WHERE collection_id = ? AND active = 1",
            (collection.id,),
        ).fetchone()[0]
        chunk_count = self._db.execute(
            """
            SELECT COUNT(*) FROM content_vectors cv
            JOIN documents d ON d.hash = cv.hash
            WHERE d.collection_id = ? AND d.active = 1
            """,
            (collection.id,),
        ).fetchone()[0]
        return CollectionStats(
            file_count=len(files),
            total_size=sum(f.stat().st_size for f in files),
            document_count=document_count,
            chunk_count=chunk_count,
        )

    def _require(self, name: str) -> Collection:
        collection = self.get_collection(name)
        if collection is None:
            raise CollectionError(f'Collection "{name}" not found.', "NOT_FOUND")
        return collection

    @staticmethod
    def _validate_path(path: str | Path) -> str:
        directory = Path(path).expanduser()
        if not directory.is_dir():
            raise CollectionError(f'Path "{directory}" does not exist.', "INVALID_PATH")
        return str(directory.resolve())
