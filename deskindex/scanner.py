"""
Scanner - Depth-first file system traversal.

Walks a root directory with os.scandir, applying PathFilter to every
directory before descending and to every file before yielding it.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncGenerator, List

from .config import get_config, IndexerConfig
from .errors import handle_error
from .models import FileInfo
from .pathfilter import PathFilter


logger = logging.getLogger(__name__)


class Scanner:
    """
    File system scanner for tree indexing.

    Yields FileInfo objects for each eligible file found. Directory-read
    and stat errors are logged and skipped without aborting the walk.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        path_filter: PathFilter | None = None,
    ):
        self.config = config or get_config()
        self.path_filter = path_filter or PathFilter(self.config)
        self._semaphore: asyncio.Semaphore | None = None
        self.filtered_count = 0
        self.error_count = 0

    async def scan_iter(
        self,
        root: Path,
        recursive: bool = True,
    ) -> AsyncGenerator[FileInfo, None]:
        """
        Iterate over eligible files under root.

        This is a streaming interface that yields files as they're found,
        useful for immediate processing without waiting for full scan.
        """
        self._semaphore = asyncio.Semaphore(self.config.scanner_concurrency)
        self.filtered_count = 0
        self.error_count = 0

        root = Path(root)
        if not root.is_dir():
            logger.warning(f"Root directory not found: {root}")
            return

        async for file_info in self._scan_directory(root, depth=0, recursive=recursive):
            yield file_info

    async def _scan_directory(
        self,
        directory: Path,
        depth: int,
        recursive: bool,
    ) -> AsyncGenerator[FileInfo, None]:
        """Scan one directory, then descend into each subdirectory in turn."""
        # Use os.scandir for efficiency (returns DirEntry with cached stat)
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            handle_error(e, directory, "scan_directory")
            self.error_count += 1
            return

        subdirs: List[Path] = []
        files: List[os.DirEntry] = []

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not recursive:
                        continue
                    if not self.path_filter.is_eligible(path, depth + 1):
                        self.filtered_count += 1
                        continue
                    subdirs.append(path)

                elif entry.is_file(follow_symlinks=False):
                    if not self.path_filter.is_eligible(path, depth):
                        self.filtered_count += 1
                        continue

                    files.append(entry)

            except OSError as e:
                handle_error(e, path, "scan_entry")
                self.error_count += 1
                continue

        # stat() calls for one directory run in parallel, bounded by the semaphore
        infos = await asyncio.gather(*[self._stat_entry(entry, depth) for entry in files])
        for file_info in infos:
            if file_info:
                yield file_info

        for subdir in subdirs:
            async for file_info in self._scan_directory(subdir, depth + 1, recursive):
                yield file_info

    async def _stat_entry(self, entry: os.DirEntry, depth: int) -> FileInfo | None:
        async with self._semaphore:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._get_file_info, entry, depth)

    def _get_file_info(self, entry: os.DirEntry, depth: int) -> FileInfo | None:
        """
        Get FileInfo from a directory entry.

        This runs stat() which may block briefly on network filesystems.
        """
        try:
            stat = entry.stat(follow_symlinks=False)
            return FileInfo.from_path(
                path=Path(entry.path),
                mtime=stat.st_mtime,
                size=stat.st_size,
                depth=depth,
            )
        except OSError as e:
            handle_error(e, Path(entry.path), "stat")
            self.error_count += 1
            return None
