"""Database migrations and schema management for QMD."""

from qmd.db.connection import Database

# Schema version for tracking migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Collections: named groupings of documents, usable as search filters
CREATE TABLE IF NOT EXISTS collections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    path TEXT NOT NULL,
    glob_pattern TEXT NOT NULL DEFAULT '**/*.md',
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

-- Documents: one active row per source path; hash changes with content
CREATE TABLE IF NOT EXISTS documents (
    hash TEXT PRIMARY KEY,
    collection_id INTEGER NOT NULL,
    path TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,  -- Soft-delete marker
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    indexed_at INTEGER NOT NULL,
    FOREIGN KEY (collection_id) REFERENCES collections(id) ON DELETE CASCADE
);

-- Full-text search index using FTS5 with BM25 ranking
-- External-content table kept in sync with documents by the triggers below
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    hash UNINDEXED,
    title,
    content,
    content=documents,
    content_rowid=rowid,
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS documents_fts_insert AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts(rowid, hash, title, content)
    VALUES (new.rowid, new.hash, new.title, new.content);
END;

CREATE TRIGGER IF NOT EXISTS documents_fts_update AFTER UPDATE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, hash, title, content)
    VALUES ('delete', old.rowid, old.hash, old.title, old.content);
    INSERT INTO documents_fts(rowid, hash, title, content)
    VALUES (new.rowid, new.hash, new.title, new.content);
END;

CREATE TRIGGER IF NOT EXISTS documents_fts_delete AFTER DELETE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, hash, title, content)
    VALUES ('delete', old.rowid, old.hash, old.title, old.content);
END;

-- Chunk text mirrored from the vector index, keyed "{hash}_{seq}"
CREATE TABLE IF NOT EXISTS content_vectors (
    hash_seq TEXT PRIMARY KEY,
    hash TEXT NOT NULL,
    seq INTEGER NOT NULL,
    pos INTEGER NOT NULL DEFAULT 0,
    chunk_text TEXT NOT NULL,
    token_count INTEGER NOT NULL,
    model TEXT,
    created_at INTEGER NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection_id);
CREATE INDEX IF NOT EXISTS idx_documents_active ON documents(active);
CREATE INDEX IF NOT EXISTS idx_content_vectors_hash ON content_vectors(hash);
"""


def run_migrations(db: Database) -> None:
    """Run database migrations to set up or upgrade schema.

    Args:
        db: Database connection to run migrations on.
    """
    current_version = 0
    if db.table_exists("schema_version"):
        result = db.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        ).fetchone()
        current_version = result[0] if result else 0

    if current_version < SCHEMA_VERSION:
        # executescript auto-commits, so the version insert is handled separately
        db.executescript(SCHEMA_SQL)

        db.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        db.commit()
