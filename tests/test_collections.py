"""Collection manager tests."""

import pytest

from qmd.collections.manager import (
    CollectionError,
    CollectionManager,
    is_valid_collection_name,
    is_valid_glob_pattern,
)
from qmd.indexing.indexer import DocumentIndexer


class TestValidation:
    @pytest.mark.parametrize("name", ["notes", "work-notes", "2024-journal"])
    def test_valid_names(self, name):
        assert is_valid_collection_name(name)

    @pytest.mark.parametrize("name", ["", "Notes", "work_notes", "-notes", "notes-", "a--b"])
    def test_invalid_names(self, name):
        assert not is_valid_collection_name(name)

    def test_glob_patterns(self):
        assert is_valid_glob_pattern("**/*.md")
        assert is_valid_glob_pattern("**/*.md, !drafts/**")
        assert not is_valid_glob_pattern("")
        assert not is_valid_glob_pattern("!drafts/**")
        assert not is_valid_glob_pattern("*" * 300)


class TestAddCollection:
    def test_add_and_get(self, collections, notes_dir):
        created = collections.add_collection("notes", notes_dir)

        fetched = collections.get_collection("notes")
        assert fetched == created
        assert fetched.path == str(notes_dir.resolve())
        assert fetched.glob_pattern == "**/*.md"

    def test_invalid_name(self, collections, notes_dir):
        with pytest.raises(CollectionError) as exc_info:
            collections.add_collection("My Notes", notes_dir)

        assert exc_info.value.code == "INVALID_NAME"

    def test_duplicate(self, collections, notes_dir):
        collections.add_collection("notes", notes_dir)

        with pytest.raises(CollectionError) as exc_info:
            collections.add_collection("notes", notes_dir)

        assert exc_info.value.code == "DUPLICATE"

    def test_missing_directory(self, collections, tmp_path):
        with pytest.raises(CollectionError) as exc_info:
            collections.add_collection("notes", tmp_path / "nowhere")

        assert exc_info.value.code == "INVALID_PATH"

    def test_exclude_only_pattern(self, collections, notes_dir):
        with pytest.raises(CollectionError) as exc_info:
            collections.add_collection("notes", notes_dir, "!**/*.md")

        assert exc_info.value.code == "INVALID_PATTERN"


class TestManageCollections:
    def test_list_sorted_by_name(self, collections, notes_dir):
        collections.add_collection("zeta", notes_dir)
        collections.add_collection("alpha", notes_dir)

        assert [c.name for c in collections.list_collections()] == ["alpha", "zeta"]

    def test_rename(self, collections, notes_dir):
        collections.add_collection("notes", notes_dir)

        collections.rename_collection("notes", "journal")

        assert collections.get_collection("notes") is None
        assert collections.get_collection("journal") is not None

    def test_rename_to_taken_name(self, collections, notes_dir):
        collections.add_collection("notes", notes_dir)
        collections.add_collection("journal", notes_dir)

        with pytest.raises(CollectionError) as exc_info:
            collections.rename_collection("notes", "journal")

        assert exc_info.value.code == "DUPLICATE"

    def test_rename_missing(self, collections):
        with pytest.raises(CollectionError) as exc_info:
            collections.rename_collection("missing", "other")

        assert exc_info.value.code == "NOT_FOUND"

    def test_update_pattern(self, collections, notes_dir):
        collections.add_collection("notes", notes_dir)

        updated = collections.update_collection("notes", glob_pattern="*.txt")

        assert updated.glob_pattern == "*.txt"
        assert collections.get_collection("notes").glob_pattern == "*.txt"

    def test_remove_deletes_documents_and_chunks(self, collections, indexed_docs, temp_db):
        doc_a, doc_b = indexed_docs
        temp_db.execute(
            """
            INSERT INTO content_vectors (hash_seq, hash, seq, chunk_text, token_count, created_at)
            VALUES (?, ?, 0, 'chunk', 1, 0)
            """,
            (f"{doc_a.hash}_0", doc_a.hash),
        )
        temp_db.commit()

        removed = collections.remove_collection("notes")

        assert sorted(removed) == sorted([doc_a.hash, doc_b.hash])
        assert collections.get_collection("notes") is None
        assert temp_db.execute("SELECT COUNT(*) FROM documents").fetchone()[0] == 0
        assert temp_db.execute("SELECT COUNT(*) FROM content_vectors").fetchone()[0] == 0

    def test_remove_purges_vectors(self, temp_db, temp_vectorstore, notes_dir, make_vector):
        manager = CollectionManager(temp_db, temp_vectorstore)
        collection = manager.add_collection("notes", notes_dir)
        doc = DocumentIndexer(temp_db, manager).index_document(
            "notes/a.md", "Alpha", collection.id
        )
        temp_vectorstore.upsert_embeddings(
            ids=[f"{doc.hash}_0"],
            embeddings=[make_vector(1)],
            metadatas=[{"hash": doc.hash, "seq": 0}],
        )

        manager.remove_collection("notes")

        assert temp_vectorstore.count() == 0


class TestFiles:
    def test_list_files_applies_excludes(self, collections, notes_dir):
        (notes_dir / "a.md").write_text("a")
        (notes_dir / "drafts").mkdir()
        (notes_dir / "drafts" / "b.md").write_text("b")
        (notes_dir / "c.txt").write_text("c")
        collections.add_collection("notes", notes_dir, "**/*.md, !drafts/**")

        files = collections.list_files("notes")

        assert [f.name for f in files] == ["a.md"]

    def test_stats(self, collections, notes_dir, indexed_docs):
        (notes_dir / "a.md").write_text("hello")

        stats = collections.collection_stats("notes")

        assert stats.file_count == 1
        assert stats.total_size == 5
        assert stats.document_count == 2
        assert stats.chunk_count == 0
