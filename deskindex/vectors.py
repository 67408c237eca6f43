"""
Vector Store - Durable store of chunk vectors for similarity lookup.

Vectors are written best-effort next to the metadata store: a chunk row
without a vector is an expected state, not corruption. When no backing
store can be opened, NullVectorStore turns every write into a no-op.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from .models import VectorEntry


logger = logging.getLogger(__name__)


class VectorStore(ABC):
    """Append-oriented store of VectorEntry rows."""

    available: bool = True

    @abstractmethod
    def add(self, entries: List[VectorEntry]) -> int:
        """Append a batch of entries. Returns the number written."""

    @abstractmethod
    def delete_path(self, path: str) -> int:
        """Remove every vector of a file. Returns the number removed."""

    @abstractmethod
    def delete_under(self, folder: str) -> int:
        """Remove every vector of every file below folder."""

    @abstractmethod
    def search(self, vector: np.ndarray, top_k: int = 10) -> List[Tuple[VectorEntry, float]]:
        """Return the top_k entries by cosine similarity."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored vectors."""

    def close(self) -> None:
        pass

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class NullVectorStore(VectorStore):
    """Stand-in used when no vector backend is available."""

    available = False

    def add(self, entries: List[VectorEntry]) -> int:
        return 0

    def delete_path(self, path: str) -> int:
        return 0

    def delete_under(self, folder: str) -> int:
        return 0

    def search(self, vector: np.ndarray, top_k: int = 10) -> List[Tuple[VectorEntry, float]]:
        return []

    def count(self) -> int:
        return 0


class SqliteVectorStore(VectorStore):
    """
    Vectors as float32 blobs in SQLite, scored with numpy.

    Brute-force cosine similarity is fine for a personal file tree.
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
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._init_tables()
        return self._conn

    def open(self) -> "SqliteVectorStore":
        with self._lock:
            self._get_connection()
        return self

    def _init_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS file_vectors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT NOT NULL,
                chunk_id TEXT NOT NULL,
                text TEXT NOT NULL,
                file_type TEXT,
                language TEXT,
                dim INTEGER NOT NULL,
                vector BLOB NOT NULL,
                created_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_vectors_path ON file_vectors(path);
        """)
        self._conn.commit()

    @staticmethod
    def serialize_vector(vector: np.ndarray) -> bytes:
        """Convert a vector to bytes for storage."""
        return np.asarray(vector, dtype=np.float32).tobytes()

    @staticmethod
    def deserialize_vector(data: bytes) -> np.ndarray:
        """Convert bytes back to a vector."""
        return np.frombuffer(data, dtype=np.float32)

    def add(self, entries: List[VectorEntry]) -> int:
        if not entries:
            return 0
        rows = [
            (
                e.path, e.chunk_id, e.text, e.file_type, e.language,
                int(np.asarray(e.vector).shape[0]),
                self.serialize_vector(e.vector),
                e.created_at.timestamp(),
            )
            for e in entries
        ]
        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.executemany(
                    """
                    INSERT INTO file_vectors
                        (path, chunk_id, text, file_type, language, dim, vector, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        return len(rows)

    def delete_path(self, path: str) -> int:
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute("DELETE FROM file_vectors WHERE path = ?", (path,))
        return cursor.rowcount

    def delete_under(self, folder: str) -> int:
        prefix = folder.rstrip("/\\")
        prefix += "\\" if "\\" in prefix else "/"
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute(
                    "DELETE FROM file_vectors WHERE substr(path, 1, ?) = ?",
                    (len(prefix), prefix),
                )
        return cursor.rowcount

    def search(self, vector: np.ndarray, top_k: int = 10) -> List[Tuple[VectorEntry, float]]:
        query = np.asarray(vector, dtype=np.float32)
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM file_vectors WHERE dim = ?", (int(query.shape[0]),)
            ).fetchall()
        if not rows:
            return []

        matrix = np.vstack([self.deserialize_vector(r["vector"]) for r in rows])
        norms = np.linalg.norm(matrix, axis=1) * (np.linalg.norm(query) or 1.0)
        norms[norms == 0] = 1.0
        scores = matrix @ query / norms

        order = np.argsort(-scores)[:top_k]
        return [(self._row_to_entry(rows[i], matrix[i]), float(scores[i])) for i in order]

    def count(self) -> int:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT COUNT(*) FROM file_vectors"
            ).fetchone()
        return row[0]

    @staticmethod
    def _row_to_entry(row: sqlite3.Row, vector: np.ndarray) -> VectorEntry:
        return VectorEntry(
            vector=vector,
            text=row["text"],
            path=row["path"],
            chunk_id=row["chunk_id"],
            file_type=row["file_type"],
            language=row["language"],
            created_at=datetime.fromtimestamp(row["created_at"]),
        )

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
