"""
Path Filter - Decides which paths may be traversed, indexed or watched.

Pure predicates over path strings: nothing here touches the filesystem.
The skip lists live in IndexerConfig so they can be tuned per install.
"""

import ntpath
import posixpath
import re
from pathlib import Path, PurePath
from typing import List

from .config import get_config, IndexerConfig


def _normalize(path: str | PurePath) -> str:
    """Lowercase, collapse separators and dot segments."""
    raw = str(path)
    if "\\" in raw or (len(raw) > 1 and raw[1] == ":"):
        return ntpath.normpath(raw).lower()
    return posixpath.normpath(raw).lower()


def _components(normalized: str) -> List[str]:
    return [part for part in normalized.replace("\\", "/").split("/") if part]


class PathFilter:
    """
    Eligibility and safety checks for paths.

    is_eligible() is applied to every directory before descending into it
    and to every file before indexing. is_safe_root() guards the roots a
    user may ask to index or watch.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._system_prefixes = tuple(
            _normalize(p) for p in self.config.system_prefixes
        )
        self._system_dirs = {d.lower() for d in self.config.system_dirs}
        self._ephemeral = {n.lower() for n in self.config.ephemeral_names}
        self._skip_dirs = {d.lower() for d in self.config.skip_dirs}
        self._skip_files = {f.lower() for f in self.config.skip_files}
        self._allowed_hidden = {d.lower() for d in self.config.allowed_hidden_dirs}

    def is_eligible(self, path: str | PurePath, depth: int = 0) -> bool:
        """Check whether a path may be traversed or indexed."""
        if depth > self.config.max_depth:
            return False

        normalized = _normalize(path)
        if self._under_system_prefix(normalized):
            return False

        for part in _components(normalized):
            if self._is_rejected_component(part):
                return False

        return True

    def is_safe_root(self, path: str | PurePath) -> bool:
        """
        Check whether a path lies inside one of the configured user folders.

        This is a hard boundary: anything outside safe_roots is refused,
        even when requested explicitly.
        """
        normalized = _normalize(path)
        if self._under_system_prefix(normalized):
            return False

        parts = _components(normalized)
        for root in self.config.safe_roots:
            root_parts = _components(_normalize(root))
            if root_parts and parts[:len(root_parts)] == root_parts:
                return True
        return False

    def ignore_regexes(self) -> List[str]:
        """
        Regexes equivalent to the component checks, for the watcher.

        Matched case-insensitively against full event paths so rejected
        subtrees are dropped at subscription time.
        """
        names = sorted(self._skip_dirs | self._system_dirs | self._ephemeral | self._skip_files)
        alternation = "|".join(re.escape(name) for name in names)
        allowed = "|".join(re.escape(name[1:]) for name in sorted(self._allowed_hidden))
        hidden = rf"\.(?!(?:{allowed})(?:[/\\]|$))" if allowed else r"\."
        return [
            rf".*[/\\](?:{alternation})(?:[/\\].*)?$",
            rf".*[/\\]{hidden}[^/\\]*(?:[/\\].*)?$",
        ]

    def _under_system_prefix(self, normalized: str) -> bool:
        unified = normalized.replace("\\", "/")
        for prefix in self._system_prefixes:
            prefix = prefix.replace("\\", "/")
            if prefix.endswith("$"):
                if unified.startswith(prefix):
                    return True
            elif unified == prefix or unified.startswith(prefix.rstrip("/") + "/"):
                return True
        return False

    def _is_rejected_component(self, part: str) -> bool:
        if part in self._system_dirs or part in self._ephemeral:
            return True
        if part in self._skip_dirs or part in self._skip_files:
            return True
        if part.startswith(".") and part not in self._allowed_hidden:
            return True
        return False


def is_eligible(path: str | Path, config: IndexerConfig | None = None) -> bool:
    """Convenience wrapper around PathFilter.is_eligible."""
    return PathFilter(config).is_eligible(path)
