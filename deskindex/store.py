"""
Store - SQLite metadata store and store lifecycle.

The metadata store keeps one row per indexed file, the text chunks of each
file and an append-only search history. It is explicitly constructed and
passed to the Indexer, SearchEngine and Orchestrator; open_stores() opens
it together with the vector store and degrades when either is missing.
"""

import logging
import shutil
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import get_config, IndexerConfig
from .errors import StoreError, StoreInitError
from .models import (
    FileRecord, Chunk, SearchHistoryEntry, DatabaseStats
)
from .vectors import VectorStore, SqliteVectorStore, NullVectorStore


logger = logging.getLogger(__name__)


def _like_pattern(term: str) -> str:
    """Case-folded %term% with LIKE wildcards escaped."""
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _subtree_prefix(folder: str) -> str:
    """Folder with one trailing separator; every path below it starts with this."""
    prefix = folder.rstrip("/\\")
    return prefix + ("\\" if "\\" in prefix else "/")


class MetadataStore:
    """
    Durable record of indexed files, chunks and search history.

    One connection is shared across worker threads; every statement runs
    under a re-entrant lock, so writes for different paths are serialized
    at the connection while callers stay concurrent.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # Performance optimizations
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA cache_size = -64000")  # 64MB cache
            self._init_tables()
        return self._conn

    def open(self) -> "MetadataStore":
        with self._lock:
            self._get_connection()
        return self

    def _init_tables(self):
        """Create tables if they don't exist."""
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path TEXT UNIQUE NOT NULL,
                content_hash TEXT NOT NULL,
                last_indexed REAL NOT NULL,
                file_size INTEGER,
                file_type TEXT,
                language TEXT,
                chunk_count INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path TEXT NOT NULL,
                chunk_id TEXT NOT NULL,
                text_content TEXT NOT NULL,
                file_type TEXT,
                language TEXT,
                created_at REAL NOT NULL,
                UNIQUE(file_path, chunk_id)
            );

            CREATE TABLE IF NOT EXISTS search_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                query TEXT NOT NULL,
                results_count INTEGER,
                search_type TEXT,
                created_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_files_hash ON files(content_hash);
            CREATE INDEX IF NOT EXISTS idx_files_type ON files(file_type);
            CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(file_path);
            CREATE INDEX IF NOT EXISTS idx_search_history_query ON search_history(query);
        """)
        self._migrate()
        conn.commit()

    def _migrate(self):
        """Add columns missing from databases created by older versions."""
        columns = {row["name"] for row in self._conn.execute("PRAGMA table_info(files)")}
        if "chunk_count" not in columns:
            logger.info("Adding missing chunk_count column")
            self._conn.execute("ALTER TABLE files ADD COLUMN chunk_count INTEGER DEFAULT 0")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            with self._lock:
                conn = self._get_connection()
                with conn:
                    return conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    # --- Files ---

    def upsert_file(self, record: FileRecord) -> None:
        """Insert or replace the record for record.path."""
        self._execute(
            """
            INSERT OR REPLACE INTO files
                (file_path, content_hash, last_indexed, file_size, file_type, language, chunk_count)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.path,
                record.content_hash,
                record.last_indexed_at.timestamp(),
                record.size_bytes,
                record.file_type,
                record.language,
                record.chunk_count,
            ),
        )

    def get_file(self, path: str) -> Optional[FileRecord]:
        rows = self._query("SELECT * FROM files WHERE file_path = ?", (path,))
        return self._row_to_record(rows[0]) if rows else None

    def delete_file(self, path: str) -> bool:
        """Retract a file and its chunks. Returns True if a record existed."""
        try:
            with self._lock:
                conn = self._get_connection()
                with conn:
                    conn.execute("DELETE FROM chunks WHERE file_path = ?", (path,))
                    cursor = conn.execute("DELETE FROM files WHERE file_path = ?", (path,))
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        return cursor.rowcount > 0

    # --- Chunks ---

    def upsert_chunk(self, chunk: Chunk) -> None:
        """Insert or replace a chunk keyed by (file_path, chunk_id)."""
        self._execute(
            """
            INSERT OR REPLACE INTO chunks
                (file_path, chunk_id, text_content, file_type, language, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.file_path,
                chunk.chunk_id,
                chunk.text_content,
                chunk.file_type,
                chunk.language,
                datetime.now().timestamp(),
            ),
        )

    def get_chunks(self, path: str) -> List[Chunk]:
        rows = self._query(
            "SELECT * FROM chunks WHERE file_path = ? ORDER BY id", (path,)
        )
        return [
            Chunk(
                file_path=r["file_path"],
                chunk_id=r["chunk_id"],
                text_content=r["text_content"],
                file_type=r["file_type"],
                language=r["language"],
            )
            for r in rows
        ]

    def prune_chunks(self, path: str, keep: List[str]) -> int:
        """Delete chunks of a file whose ids are not in keep."""
        placeholders = ",".join("?" for _ in keep)
        sql = "DELETE FROM chunks WHERE file_path = ?"
        if keep:
            sql += f" AND chunk_id NOT IN ({placeholders})"
        cursor = self._execute(sql, (path, *keep))
        return cursor.rowcount

    # --- Search history ---

    def add_search_history(self, entry: SearchHistoryEntry) -> None:
        self._execute(
            """
            INSERT INTO search_history (query, results_count, search_type, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (entry.query, entry.results_count, entry.search_type, entry.created_at.timestamp()),
        )

    def recent_searches(self, limit: int = 20) -> List[SearchHistoryEntry]:
        rows = self._query(
            "SELECT * FROM search_history ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        )
        return [
            SearchHistoryEntry(
                query=r["query"],
                results_count=r["results_count"],
                search_type=r["search_type"],
                created_at=datetime.fromtimestamp(r["created_at"]),
            )
            for r in rows
        ]

    # --- Queries ---

    def count_files(self) -> int:
        return self._query("SELECT COUNT(*) FROM files")[0][0]

    def count_chunks(self) -> int:
        return self._query("SELECT COUNT(*) FROM chunks")[0][0]

    def count_files_under(self, folder: str) -> int:
        prefix = _subtree_prefix(folder)
        rows = self._query(
            "SELECT COUNT(*) FROM files WHERE substr(file_path, 1, ?) = ?",
            (len(prefix), prefix),
        )
        return rows[0][0]

    def paths_under(self, folder: str) -> List[str]:
        """Every recorded file path below folder."""
        prefix = _subtree_prefix(folder)
        rows = self._query(
            "SELECT file_path FROM files WHERE substr(file_path, 1, ?) = ? ORDER BY file_path",
            (len(prefix), prefix),
        )
        return [r["file_path"] for r in rows]

    def find_by_path(self, term: str, limit: int = 5) -> List[FileRecord]:
        """Case-insensitive path substring match, newest-indexed first."""
        rows = self._query(
            """
            SELECT * FROM files
            WHERE LOWER(file_path) LIKE ? ESCAPE '\\'
            ORDER BY last_indexed DESC
            LIMIT ?
            """,
            (_like_pattern(term), limit),
        )
        return [self._row_to_record(r) for r in rows]

    def find_by_type(self, term: str, limit: int = 10) -> List[FileRecord]:
        """Match against file type or language, newest-indexed first."""
        pattern = _like_pattern(term)
        rows = self._query(
            """
            SELECT * FROM files
            WHERE LOWER(file_type) LIKE ? ESCAPE '\\'
               OR LOWER(language) LIKE ? ESCAPE '\\'
            ORDER BY last_indexed DESC
            LIMIT ?
            """,
            (pattern, pattern, limit),
        )
        return [self._row_to_record(r) for r in rows]

    def list_ranked(self, term: str, limit: int = 15) -> List[FileRecord]:
        """All files: path matches first, then code/documentation, then recency."""
        rows = self._query(
            """
            SELECT * FROM files
            ORDER BY
                CASE
                    WHEN LOWER(file_path) LIKE ? ESCAPE '\\' THEN 1
                    WHEN file_type IN ('code', 'documentation') THEN 2
                    ELSE 3
                END,
                last_indexed DESC
            LIMIT ?
            """,
            (_like_pattern(term), limit),
        )
        return [self._row_to_record(r) for r in rows]

    def is_healthy(self) -> bool:
        """Run a trivial query to verify the connection."""
        try:
            return isinstance(self.count_files(), int)
        except StoreError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def stats(self) -> DatabaseStats:
        last = self._query("SELECT MAX(last_indexed) FROM files")[0][0]
        types = self._query(
            "SELECT DISTINCT file_type FROM files WHERE file_type IS NOT NULL ORDER BY file_type"
        )
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return DatabaseStats(
            total_files=self.count_files(),
            total_chunks=self.count_chunks(),
            last_updated=datetime.fromtimestamp(last).strftime("%Y-%m-%d %H:%M:%S") if last else "Never",
            database_size=f"{size / (1024 * 1024):.2f} MB",
            indexed_types=[r[0] for r in types],
            metadata_available=True,
            healthy=self.is_healthy(),
        )

    def backup(self, backup_dir: Path, max_backups: int = 5) -> Optional[Path]:
        """
        Copy the database file to a timestamped backup.

        Keeps at most max_backups copies, deleting the oldest.
        """
        if not self.db_path.exists():
            return None

        backup_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        target = backup_dir / f"metadata_backup_{timestamp}.sqlite"
        with self._lock:
            shutil.copy2(self.db_path, target)
        logger.info(f"Database backup created: {target}")

        backups = sorted(backup_dir.glob("metadata_backup_*.sqlite"))
        for old in backups[:-max_backups] if max_backups > 0 else []:
            old.unlink(missing_ok=True)
        return target

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> FileRecord:
        return FileRecord(
            path=row["file_path"],
            content_hash=row["content_hash"],
            last_indexed_at=datetime.fromtimestamp(row["last_indexed"]),
            size_bytes=row["file_size"] or 0,
            file_type=row["file_type"] or "unknown",
            language=row["language"] or "unknown",
            chunk_count=row["chunk_count"] or 0,
        )

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "MetadataStore":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


@dataclass
class Stores:
    """
    The pair of stores shared by indexing and search.

    metadata is None when the metadata store could not be opened; vectors
    is a NullVectorStore when the vector store could not be opened.
    """
    metadata: Optional[MetadataStore]
    vectors: VectorStore

    def close(self) -> None:
        if self.metadata is not None:
            self.metadata.close()
        self.vectors.close()

    def __enter__(self) -> "Stores":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_stores(config: IndexerConfig | None = None) -> Stores:
    """
    Open the metadata and vector stores.

    Each store that fails to open is dropped with a logged error; only when
    both fail is StoreInitError raised.
    """
    config = config or get_config()

    metadata: Optional[MetadataStore] = None
    try:
        metadata = MetadataStore(config.db_path)
        if config.backup_on_open:
            metadata.backup(config.backup_dir, config.max_backups)
        metadata.open()
        logger.info(f"Metadata store ready: {config.db_path}")
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Metadata store setup failed, continuing without it: {e}")
        metadata = None

    vectors: VectorStore
    try:
        vectors = SqliteVectorStore(config.vector_db_path).open()
        logger.info(f"Vector store ready: {config.vector_db_path}")
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Vector store setup failed, continuing without it: {e}")
        vectors = NullVectorStore()

    if metadata is None and not vectors.available:
        raise StoreInitError("Neither the metadata store nor the vector store could be opened")

    return Stores(metadata=metadata, vectors=vectors)
