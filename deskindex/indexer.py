"""
Indexer - Writes files into the metadata and vector stores.

Each file goes through PathFilter -> ChangeDetector -> Chunker ->
EmbeddingProvider -> {MetadataStore, VectorStore}. The two store writes
are independent: a failed vector write is logged and never blocks the
chunk rows, and the FileRecord is written only after every chunk is
persisted.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List

from .chunker import Chunker
from .config import get_config, IndexerConfig
from .embedder import EmbeddingProvider, get_embedder
from .errors import IndexingError, StoreError, handle_error
from .filetypes import detect_file_type, is_text_file
from .hasher import ChangeDetector, Hasher
from .models import (
    Chunk, FileInfo, FileRecord, IndexOutcome, IndexStatus, IndexingStats, VectorEntry
)
from .pathfilter import PathFilter
from .scanner import Scanner
from .store import Stores


logger = logging.getLogger(__name__)


@dataclass
class _PathLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class Indexer:
    """
    Single-file and tree indexing.

    Blocking work runs in a thread pool. Writes for the same path are
    serialized by a per-path lock; different paths index concurrently.
    """

    BATCH_SIZE = 500  # Files gathered at once during a tree run

    def __init__(
        self,
        stores: Stores,
        config: IndexerConfig | None = None,
        embedder: EmbeddingProvider | None = None,
        path_filter: PathFilter | None = None,
        hasher: Hasher | None = None,
    ):
        self.config = config or get_config()
        self.stores = stores
        self.embedder = embedder or get_embedder(self.config)
        self.path_filter = path_filter or PathFilter(self.config)
        self.hasher = hasher or Hasher()
        self.change_detector = ChangeDetector(stores.metadata, self.config, self.hasher)
        self.chunker = Chunker(self.config)

        self._executor: ThreadPoolExecutor | None = None
        self._path_locks: Dict[str, _PathLock] = {}
        self._locks_guard = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.indexer_concurrency,
                thread_name_prefix="indexer"
            )
        return self._executor

    @contextmanager
    def _path_lock(self, path: str):
        """Hold the lock for one path; the entry is dropped when nobody holds or waits on it."""
        with self._locks_guard:
            entry = self._path_locks.get(path)
            if entry is None:
                entry = self._path_locks[path] = _PathLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._path_locks[path]

    # --- Single file ---

    async def index_file(self, path: Path | str, depth: int = 0) -> IndexOutcome:
        """Index one file. Never raises; failures become a FAILED outcome."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), self.index_file_sync, Path(path), depth
        )

    def index_file_sync(self, path: Path, depth: int = 0) -> IndexOutcome:
        """
        Synchronous single-file indexing (runs in thread pool).

        Holds the path's lock for the whole run so concurrent requests for
        the same file never interleave their writes.
        """
        key = str(path)
        with self._path_lock(key):
            try:
                return self._index_locked(path, depth)
            except Exception as e:
                handle_error(e, path, "index_file")
                return IndexOutcome.failed(key, e)

    def _index_locked(self, path: Path, depth: int) -> IndexOutcome:
        key = str(path)

        if not self.path_filter.is_eligible(path, depth):
            return IndexOutcome.skipped(key, "path is not eligible for indexing")
        if not path.is_file():
            return IndexOutcome.skipped(key, "not a regular file")
        if not is_text_file(path):
            return IndexOutcome.skipped(key, "unsupported file type")

        size = path.stat().st_size
        if size > self.config.max_file_size:
            logger.debug(f"Skipping large file ({size} bytes): {path}")
            return IndexOutcome.skipped(key, f"file too large ({size} bytes)")

        content_hash = self.hasher.compute_hash(path)
        if not self.change_detector.needs_indexing(path, content_hash):
            return IndexOutcome(path=key, status=IndexStatus.UNCHANGED)

        text = path.read_text(encoding="utf-8", errors="replace")
        if len(text.strip()) < self.config.min_content_length:
            return IndexOutcome.skipped(key, "content too short")

        kind = detect_file_type(path)
        chunks = [
            Chunk(
                file_path=key,
                chunk_id=f"{key}_chunk_{i}",
                text_content=piece,
                file_type=kind.file_type,
                language=kind.language,
            )
            for i, piece in enumerate(self.chunker.split(text))
        ]

        self._write_vectors(key, chunks)

        metadata = self.stores.metadata
        if metadata is not None:
            try:
                for chunk in chunks:
                    metadata.upsert_chunk(chunk)
                metadata.prune_chunks(key, [c.chunk_id for c in chunks])
                metadata.upsert_file(FileRecord(
                    path=key,
                    content_hash=content_hash,
                    last_indexed_at=datetime.now(),
                    size_bytes=size,
                    file_type=kind.file_type,
                    language=kind.language,
                    chunk_count=len(chunks),
                ))
            except StoreError as e:
                # No FileRecord was written, so the next run retries this file
                raise IndexingError(f"metadata write failed: {e}") from e

        logger.debug(f"Indexed {path} ({len(chunks)} chunks)")
        return IndexOutcome(path=key, status=IndexStatus.INDEXED, chunk_count=len(chunks))

    def _write_vectors(self, key: str, chunks: List[Chunk]) -> int:
        """Replace the file's vectors. Best-effort: failures are only logged."""
        vectors = self.stores.vectors
        if not vectors.available:
            return 0

        written = 0
        try:
            vectors.delete_path(key)
            batch_size = self.config.vector_batch_size
            for i in range(0, len(chunks), batch_size):
                batch = chunks[i:i + batch_size]
                written += vectors.add([
                    VectorEntry(
                        vector=self.embedder.embed(c.text_content),
                        text=c.text_content,
                        path=c.file_path,
                        chunk_id=c.chunk_id,
                        file_type=c.file_type,
                        language=c.language,
                    )
                    for c in batch
                ])
        except Exception as e:
            handle_error(StoreError(f"vector write failed: {e}"), Path(key), "vectors")
        return written

    # --- Retraction ---

    async def remove_file(self, path: Path | str) -> bool:
        """Retract a file's record, chunks and vectors."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), self.remove_file_sync, Path(path)
        )

    def remove_file_sync(self, path: Path) -> bool:
        key = str(path)
        with self._path_lock(key):
            try:
                self.stores.vectors.delete_path(key)
            except Exception as e:
                handle_error(StoreError(f"vector delete failed: {e}"), path, "remove_file")

            if self.stores.metadata is None:
                return False
            try:
                removed = self.stores.metadata.delete_file(key)
            except StoreError as e:
                handle_error(e, path, "remove_file")
                return False

        if removed:
            logger.info(f"Removed from index: {path}")
        return removed

    async def remove_tree(self, folder: Path | str) -> int:
        """Retract every file recorded below folder. Returns the number removed."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), self.remove_tree_sync, Path(folder)
        )

    def remove_tree_sync(self, folder: Path) -> int:
        paths: List[str] = []
        if self.stores.metadata is not None:
            try:
                paths = self.stores.metadata.paths_under(str(folder))
            except StoreError as e:
                handle_error(e, folder, "remove_tree")

        removed = sum(1 for p in paths if self.remove_file_sync(Path(p)))

        # Vectors may exist without a FileRecord when metadata was unavailable
        try:
            self.stores.vectors.delete_under(str(folder))
        except Exception as e:
            handle_error(StoreError(f"vector delete failed: {e}"), folder, "remove_tree")

        if paths:
            logger.info(f"Removed {removed} files under {folder}")
        return removed

    # --- Tree ---

    async def index_tree(self, root: Path | str, recursive: bool = True) -> IndexingStats:
        """
        Index every eligible file under root.

        Roots outside the safe folders are refused. Files are indexed in
        batches through the thread pool; a bad file never aborts the run.
        """
        start_time = time.monotonic()
        stats = IndexingStats()
        # Symlinked roots compare and store under their real path, like safe_roots
        root = Path(root).expanduser().resolve()

        if not self.path_filter.is_safe_root(root):
            stats.rejected = f"{root} is outside the allowed folders"
            logger.warning(f"Refusing to index unsafe root: {root}")
            return stats
        if not root.is_dir():
            stats.rejected = f"{root} is not a directory"
            logger.warning(f"Index root not found: {root}")
            return stats

        logger.info(f"Indexing {root} (recursive={recursive})...")
        scanner = Scanner(self.config, self.path_filter)
        batch: List[FileInfo] = []

        async for file_info in scanner.scan_iter(root, recursive=recursive):
            stats.files_scanned += 1
            batch.append(file_info)
            if len(batch) >= self.BATCH_SIZE:
                await self._index_batch(batch, stats)
                batch = []

        if batch:
            await self._index_batch(batch, stats)

        stats.errors += scanner.error_count
        stats.duration_seconds = time.monotonic() - start_time
        logger.info(f"Indexing complete: {stats}")
        return stats

    async def _index_batch(self, files: List[FileInfo], stats: IndexingStats) -> None:
        outcomes = await asyncio.gather(*[
            self.index_file(info.path, info.depth) for info in files
        ])
        for outcome in outcomes:
            stats.record(outcome)

    def close(self):
        """Shut down the worker pool."""
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None
