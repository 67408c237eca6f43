"""
Query Router - Classifies a raw query into a command or a search.

Routing is an ordered list of (predicate, kind) rules evaluated
first-match-wins. The order is load-bearing: help and stats keywords are
checked before the index prefixes, and search is the default.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from .config import get_config, IndexerConfig
from .models import Classification, QueryKind


logger = logging.getLogger(__name__)


HELP_KEYWORDS = ("help", "yardım", "yardim")
STATS_KEYWORDS = ("stats", "statistics", "istatistik")

QUOTES = "\"'`“”‘’"

# A rule returns the classification params on match, None otherwise
Rule = Tuple[Callable[[str], Optional[Dict[str, str]]], QueryKind]


def _keyword_pattern(words) -> re.Pattern:
    alternation = "|".join(re.escape(w) for w in words)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)


def _prefix_pattern(prefixes) -> re.Pattern:
    alternation = "|".join(re.escape(p) for p in prefixes)
    return re.compile(rf"(?:^|\s)(?:{alternation})\s*:\s*(.*)$", re.IGNORECASE | re.DOTALL)


def _clean_target(raw: str) -> str:
    return raw.strip().strip(QUOTES).strip()


class QueryRouter:
    """
    Pure, deterministic query classifier.

    Kinds: help, stats, index_folder, index_file, search.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._help = _keyword_pattern(HELP_KEYWORDS)
        self._stats = _keyword_pattern(STATS_KEYWORDS)
        self._folder = _prefix_pattern(self.config.folder_prefixes)
        self._file = _prefix_pattern(self.config.file_prefixes)

        self.rules: List[Rule] = [
            (self._match_help, QueryKind.HELP),
            (self._match_stats, QueryKind.STATS),
            (self._match_folder, QueryKind.INDEX_FOLDER),
            (self._match_file, QueryKind.INDEX_FILE),
        ]

    def classify(self, query: str) -> Classification:
        """Return the first matching rule's classification, else search."""
        text = query.strip()
        for predicate, kind in self.rules:
            params = predicate(text)
            if params is not None:
                logger.debug(f"Routed {query!r} -> {kind.value}")
                return Classification(kind=kind, params=params)
        return Classification(kind=QueryKind.SEARCH, params={"target": query})

    def _match_help(self, text: str) -> Optional[Dict[str, str]]:
        if text == "?" or self._help.search(text):
            return {}
        return None

    def _match_stats(self, text: str) -> Optional[Dict[str, str]]:
        return {} if self._stats.search(text) else None

    def _match_folder(self, text: str) -> Optional[Dict[str, str]]:
        return self._match_prefix(self._folder, text)

    def _match_file(self, text: str) -> Optional[Dict[str, str]]:
        return self._match_prefix(self._file, text)

    @staticmethod
    def _match_prefix(pattern: re.Pattern, text: str) -> Optional[Dict[str, str]]:
        match = pattern.search(text)
        if not match:
            return None
        target = _clean_target(match.group(1))
        # An empty target falls through to the next rule
        return {"target": target} if target else None
