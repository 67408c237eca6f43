"""
Watcher - Real-time incremental indexing.

Uses watchdog for cross-platform file system monitoring with
debouncing to batch rapid changes. Paths PathFilter would reject are
dropped at subscription time through watchdog ignore regexes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Set

from watchdog.events import FileSystemEvent, RegexMatchingEventHandler
from watchdog.observers import Observer

from .config import get_config, IndexerConfig
from .indexer import Indexer
from .models import IndexStatus
from .pathfilter import PathFilter


logger = logging.getLogger(__name__)


class ChangeType(Enum):
    """Type of file system change."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class FileChange:
    """A pending file change event."""
    path: Path
    change_type: ChangeType
    timestamp: float
    is_directory: bool = False


class _EventHandler(RegexMatchingEventHandler):
    """Forwards watchdog events from the observer thread to the Watcher."""

    def __init__(self, watcher: "Watcher", ignore_regexes):
        super().__init__(
            ignore_regexes=ignore_regexes,
            ignore_directories=False,
            case_sensitive=False,
        )
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent):
        # A directory arriving whole (moved in from outside) has no file events
        self.watcher._on_event(Path(event.src_path), ChangeType.ADDED, event.is_directory)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher._on_event(Path(event.src_path), ChangeType.MODIFIED)

    def on_deleted(self, event: FileSystemEvent):
        self.watcher._on_event(Path(event.src_path), ChangeType.DELETED, event.is_directory)

    def on_moved(self, event: FileSystemEvent):
        # A move retracts the old path and indexes the new one
        self.watcher._on_event(Path(event.src_path), ChangeType.DELETED, event.is_directory)
        self.watcher._on_event(Path(event.dest_path), ChangeType.ADDED, event.is_directory)


class Watcher:
    """
    File system watcher driving the Indexer.

    One root at a time: start() on a running watcher stops the previous
    observer first. Events are coalesced per path over the debounce
    window, and at most one index run per path is in flight; a change for
    a path still being indexed waits for the next flush.
    """

    def __init__(
        self,
        indexer: Indexer,
        config: IndexerConfig | None = None,
        path_filter: PathFilter | None = None,
    ):
        self.config = config or get_config()
        self.indexer = indexer
        self.path_filter = path_filter or PathFilter(self.config)

        self._observer: Optional[Observer] = None
        self._root: Optional[Path] = None
        self._pending_changes: Dict[str, FileChange] = {}
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._debounce_task: Optional[asyncio.Task] = None
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.indexed_count = 0
        self.removed_count = 0

    @property
    def root(self) -> Optional[Path]:
        return self._root

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, root: Path | str) -> bool:
        """
        Start watching root. Must be called from the event loop thread.

        Returns:
            False when root is unsafe or missing, True once watching
        """
        root = Path(root).expanduser().resolve()

        if not self.path_filter.is_safe_root(root):
            logger.warning(f"Refusing to watch unsafe root: {root}")
            return False
        if not root.is_dir():
            logger.warning(f"Watch root not found: {root}")
            return False

        if self._observer is not None:
            logger.info(f"Restarting watcher (was watching {self._root})")
            self.stop()

        self._loop = asyncio.get_running_loop()
        self._root = root

        handler = _EventHandler(self, self.path_filter.ignore_regexes())
        self._observer = Observer()
        self._observer.schedule(handler, str(root), recursive=True)

        self._running = True
        self._observer.start()
        logger.info(f"Watching: {root}")
        return True

    def stop(self):
        """Stop watching and drop pending changes."""
        self._running = False

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

        if self._debounce_task:
            self._debounce_task.cancel()
            self._debounce_task = None

        self._pending_changes.clear()
        if self._root:
            logger.info(f"File watcher stopped: {self._root}")
        self._root = None

    def _on_event(self, path: Path, change_type: ChangeType, is_directory: bool = False):
        """Called on the observer thread; hands the event to the loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._queue_change, path, change_type, is_directory)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug(f"Dropped event after loop shutdown: {path}")

    def _depth(self, path: Path) -> int:
        try:
            return len(path.relative_to(self._root).parts) - 1
        except (TypeError, ValueError):
            return 0

    def _queue_change(self, path: Path, change_type: ChangeType, is_directory: bool = False):
        """Queue a change for debounced processing."""
        if not self._running:
            return
        if not self.path_filter.is_eligible(path, self._depth(path)):
            return

        # Use path as key - later events override earlier ones
        self._pending_changes[str(path)] = FileChange(
            path=path,
            change_type=change_type,
            timestamp=time.monotonic(),
            is_directory=is_directory,
        )
        self._schedule_flush()

    def _schedule_flush(self):
        """Schedule a debounced flush of pending changes."""
        if self._debounce_task and not self._debounce_task.done():
            # Already scheduled
            return

        if self._loop and self._running:
            self._debounce_task = self._loop.create_task(self._flush_after_delay())

    async def _flush_after_delay(self):
        """Wait for debounce period then flush changes."""
        await asyncio.sleep(self.config.debounce_ms / 1000.0)
        self._flush_changes()

    def _flush_changes(self):
        """Start processing for every pending path not already in flight."""
        if not self._pending_changes:
            return

        changes = list(self._pending_changes.values())
        self._pending_changes.clear()

        started = 0
        for change in changes:
            key = str(change.path)
            if key in self._in_flight:
                # Keep the newest event for after the current run
                self._pending_changes.setdefault(key, change)
                continue

            self._in_flight.add(key)
            task = self._loop.create_task(self._process(change))
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
            started += 1

        if started:
            logger.info(f"Processing {started} file changes")

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if self._pending_changes and self._running:
            self._schedule_flush()

    async def _process(self, change: FileChange):
        key = str(change.path)
        try:
            if change.is_directory:
                await self._process_directory(change)
            elif change.change_type == ChangeType.DELETED:
                if await self.indexer.remove_file(change.path):
                    self.removed_count += 1
            else:
                outcome = await self.indexer.index_file(change.path, self._depth(change.path))
                if outcome.status == IndexStatus.INDEXED:
                    self.indexed_count += 1
                    logger.info(f"Re-indexed {change.path} ({outcome.chunk_count} chunks)")
                elif outcome.status == IndexStatus.FAILED:
                    logger.warning(f"Failed to index {change.path}: {outcome.reason}")
        finally:
            self._in_flight.discard(key)

    async def _process_directory(self, change: FileChange):
        """Deleted or moved-away folders retract their subtree; arriving ones are indexed."""
        if change.change_type == ChangeType.DELETED:
            self.removed_count += await self.indexer.remove_tree(change.path)
            return
        stats = await self.indexer.index_tree(change.path)
        self.indexed_count += stats.files_indexed
        if stats.files_indexed:
            logger.info(f"Indexed {stats.files_indexed} files in {change.path}")

    def get_pending_count(self) -> int:
        """Get number of pending changes."""
        return len(self._pending_changes)

    def is_idle(self) -> bool:
        """True when nothing is pending, scheduled or in flight."""
        debouncing = self._debounce_task is not None and not self._debounce_task.done()
        return not (self._pending_changes or self._tasks or debouncing)

    async def wait_idle(self, timeout: float = 10.0) -> bool:
        """Wait until all queued changes have been processed."""
        deadline = time.monotonic() + timeout
        while not self.is_idle():
            if time.monotonic() > deadline:
                return False
            await asyncio.sleep(0.02)
        return True
