"""
Data Models - Type definitions for the indexing and search pipeline.

These dataclasses represent the records persisted by the stores and the
values flowing between pipeline stages.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

import numpy as np


class IndexStatus(Enum):
    """Outcome of indexing a single file."""
    INDEXED = "indexed"       # Chunks and metadata written
    UNCHANGED = "unchanged"   # Hash matches and record is fresh
    SKIPPED = "skipped"       # Ineligible, unsupported, oversized or too short
    FAILED = "failed"         # Read, embedding or store failure


class ResultType(Enum):
    """Kind of entry returned to a caller of search/answer."""
    FILE = "file"
    ANSWER = "answer"
    GUIDANCE = "guidance"
    HELP = "help"
    STATS = "stats"
    INDEX_RESULT = "index_result"
    ERROR = "error"


class QueryKind(Enum):
    """Command classification of a raw query string."""
    HELP = "help"
    STATS = "stats"
    INDEX_FOLDER = "index_folder"
    INDEX_FILE = "index_file"
    SEARCH = "search"


class Intent(Enum):
    """What the user wants from the responder for a search query."""
    CODE_REQUEST = "code_request"
    ERROR_HELP = "error_help"
    SUMMARY_REQUEST = "summary_request"
    GENERAL = "general"


# Reserved marker paths. Entries with these paths are never files.
NO_DB_PATH = "<no-db>"
NO_FILES_PATH = "<no-files>"
NO_RESULTS_PATH = "<no-results>"
EMPTY_QUERY_PATH = "<empty-query>"
SEARCH_ERROR_PATH = "<search-error>"
HELP_PATH = "<help>"
STATS_PATH = "<stats>"
INDEX_RESULT_PATH = "<index-result>"
ANSWER_PATH = "<answer>"
GUIDANCE_PATH = "<guidance>"

SENTINEL_PATHS = frozenset({
    NO_DB_PATH, NO_FILES_PATH, NO_RESULTS_PATH, EMPTY_QUERY_PATH,
    SEARCH_ERROR_PATH, HELP_PATH, STATS_PATH, INDEX_RESULT_PATH,
    ANSWER_PATH, GUIDANCE_PATH,
})


@dataclass(frozen=True)
class FileKind:
    """Static classification of a file by extension or basename."""
    file_type: str
    language: str


@dataclass
class FileInfo:
    """
    Basic file information from the scanner.

    Contains only what we get from stat() without reading file content.
    """
    path: Path
    name: str
    extension: str
    size: int
    mtime: datetime
    depth: int = 0

    @classmethod
    def from_path(cls, path: Path, mtime: float, size: int, depth: int = 0) -> "FileInfo":
        """Create FileInfo from a path and stat result."""
        return cls(
            path=path,
            name=path.name,
            extension=path.suffix.lower(),
            size=size,
            mtime=datetime.fromtimestamp(mtime),
            depth=depth,
        )


@dataclass
class FileRecord:
    """
    A row in the files table.

    The path is the natural key; the Indexer is the only writer.
    """
    path: str
    content_hash: str          # SHA-256 hex digest of raw bytes
    last_indexed_at: datetime
    size_bytes: int
    file_type: str
    language: str
    chunk_count: int = 0


@dataclass
class Chunk:
    """A bounded slice of a file's text, keyed by (file_path, chunk_id)."""
    file_path: str
    chunk_id: str
    text_content: str
    file_type: str
    language: str


@dataclass
class VectorEntry:
    """Vector store mirror of a Chunk."""
    vector: np.ndarray
    text: str
    path: str
    chunk_id: str
    file_type: str
    language: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class SearchHistoryEntry:
    """Append-only audit record of a search."""
    query: str
    results_count: int
    search_type: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Classification:
    """Result of routing a raw query string."""
    kind: QueryKind
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> str:
        return self.params.get("target", "")


@dataclass
class SearchResult:
    """
    One entry of a search or answer response.

    Sentinel entries carry a reserved marker path (see SENTINEL_PATHS).
    """
    path: str
    text: str
    result_type: ResultType = ResultType.FILE
    file_size: Optional[int] = None
    indexed_date: Optional[str] = None
    file_type: Optional[str] = None
    language: Optional[str] = None
    relevance_score: int = 0

    @property
    def is_sentinel(self) -> bool:
        return self.path in SENTINEL_PATHS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "text": self.text,
            "type": self.result_type.value,
            "file_size": self.file_size,
            "indexed_date": self.indexed_date,
            "file_type": self.file_type,
            "language": self.language,
            "relevance_score": self.relevance_score,
        }


@dataclass
class IndexOutcome:
    """Result of indexing a single file."""
    path: str
    status: IndexStatus
    reason: str = ""
    chunk_count: int = 0

    @classmethod
    def skipped(cls, path: str, reason: str) -> "IndexOutcome":
        return cls(path=path, status=IndexStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, path: str, error: Exception) -> "IndexOutcome":
        return cls(path=path, status=IndexStatus.FAILED, reason=str(error))


@dataclass
class IndexingStats:
    """Statistics from an indexing run."""
    files_scanned: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    chunks_created: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    rejected: Optional[str] = None   # Set when the root itself was refused

    def record(self, outcome: IndexOutcome) -> None:
        if outcome.status == IndexStatus.INDEXED:
            self.files_indexed += 1
            self.chunks_created += outcome.chunk_count
        elif outcome.status == IndexStatus.UNCHANGED:
            self.files_unchanged += 1
        elif outcome.status == IndexStatus.SKIPPED:
            self.files_skipped += 1
        else:
            self.errors += 1

    def __str__(self) -> str:
        if self.rejected:
            return f"Rejected: {self.rejected}"
        return (
            f"Indexed {self.files_indexed} files "
            f"({self.chunks_created} chunks, "
            f"{self.files_unchanged} unchanged, "
            f"{self.files_skipped} skipped, "
            f"{self.errors} errors) "
            f"in {self.duration_seconds:.1f}s"
        )


@dataclass
class DatabaseStats:
    """Aggregate view of the stores, shown by the stats command."""
    total_files: int = 0
    total_chunks: int = 0
    total_vectors: int = 0
    last_updated: str = "Never"
    database_size: str = "0 MB"
    indexed_types: List[str] = field(default_factory=list)
    metadata_available: bool = False
    vectors_available: bool = False
    healthy: bool = False
