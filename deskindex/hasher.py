"""
Hasher - Content fingerprints and change detection.

Hashes raw file bytes with SHA-256 and compares the digest with the stored
FileRecord to decide whether a file must be (re)indexed.
"""

import hashlib
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from .config import get_config, IndexerConfig
from .store import MetadataStore


logger = logging.getLogger(__name__)


class Hasher:
    """SHA-256 content hasher."""

    BLOCK_SIZE = 65536

    def compute_hash(self, path: Path) -> str:
        """
        Compute the SHA-256 hex digest of file bytes.

        Reads in 64KB blocks for memory efficiency.
        """
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            while block := f.read(self.BLOCK_SIZE):
                hasher.update(block)
        return hasher.hexdigest()


class ChangeDetector:
    """
    Decides whether a file needs (re)indexing.

    A file is fresh only when its stored hash matches AND it was indexed
    within the freshness window. Either check failing means re-index.
    This is a read-only query against the metadata store.
    """

    def __init__(
        self,
        metadata: Optional[MetadataStore],
        config: IndexerConfig | None = None,
        hasher: Hasher | None = None,
    ):
        self.config = config or get_config()
        self.metadata = metadata
        self.hasher = hasher or Hasher()

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(hours=self.config.freshness_hours)

    def needs_indexing(self, path: Path, content_hash: str | None = None) -> bool:
        """
        Check whether a file must be indexed.

        Args:
            path: File to check
            content_hash: Precomputed digest (computed here when omitted)

        Returns:
            True when there is no record, the hash differs, or the record
            is older than the freshness window.
        """
        if self.metadata is None:
            return True

        record = self.metadata.get_file(str(path))
        if record is None:
            return True

        if content_hash is None:
            content_hash = self.hasher.compute_hash(path)

        if record.content_hash != content_hash:
            logger.debug(f"Content changed: {path}")
            return True

        if datetime.now() - record.last_indexed_at > self.freshness_window:
            logger.debug(f"Record stale, revalidating: {path}")
            return True

        return False
