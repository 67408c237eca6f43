"""
Search Engine - Multi-phase lexical retrieval over indexed files.

Candidates come from the metadata store in three phases (path match,
type/language match, general ranking). Each candidate is re-read from disk
and scored by filename and content hits. The result list is never empty:
every "nothing to show" condition is reported as one sentinel entry.
"""

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from .config import get_config, IndexerConfig
from .errors import StoreError, handle_error
from .models import (
    FileRecord, ResultType, SearchHistoryEntry, SearchResult,
    EMPTY_QUERY_PATH, NO_DB_PATH, NO_FILES_PATH, NO_RESULTS_PATH, SEARCH_ERROR_PATH,
)
from .store import MetadataStore


logger = logging.getLogger(__name__)


# Lines declaring importable, exportable or callable constructs
NOTABLE_LINE = re.compile(r"\b(?:import|export|class|interface|function|def)\b")


class SearchEngine:
    """
    Ranked search cascade against the metadata store and file contents.

    Phases:
    1. Exact: query is a substring of the path (newest first, up to 5)
    2. Type: query matches file type or language (only if phase 1 < 3)
    3. General: everything, path matches and code/docs first (only if < 5)
    """

    EXACT_LIMIT = 5
    TYPE_LIMIT = 10
    GENERAL_LIMIT = 15
    WORKING_SET = 10

    TITLE_SCORE = 10
    FALLBACK_SCORE = 1
    PREVIEW_LINES = 15
    PREVIEW_CHARS = 600
    FALLBACK_PREVIEW_CHARS = 400

    def __init__(
        self,
        metadata: Optional[MetadataStore],
        config: IndexerConfig | None = None,
    ):
        self.config = config or get_config()
        self.metadata = metadata
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.search_concurrency,
                thread_name_prefix="search"
            )
        return self._executor

    async def search(self, query: str) -> List[SearchResult]:
        """
        Run the cascade for query.

        Returns:
            Genuine results sorted by descending relevance, or exactly one
            sentinel result. Never raises.
        """
        if not query.strip():
            return [_sentinel(EMPTY_QUERY_PATH, "Type something to search for.", ResultType.ERROR)]

        if self.metadata is None:
            return [_sentinel(NO_DB_PATH, "Metadata store not available.", ResultType.ERROR)]

        try:
            results = await self._search(query)
        except Exception as e:
            handle_error(e, context="search")
            results = [_sentinel(SEARCH_ERROR_PATH, f"Search error: {e}", ResultType.ERROR)]

        self._log_history(query, results)
        return results

    async def _search(self, query: str) -> List[SearchResult]:
        loop = asyncio.get_running_loop()
        executor = self._get_executor()
        term = query.strip().lower()

        total = await loop.run_in_executor(executor, self.metadata.count_files)
        if total == 0:
            return [_sentinel(
                NO_FILES_PATH,
                'No files indexed yet. Index a folder first, e.g. "folder: Projects".',
                ResultType.ERROR,
            )]

        candidates = await loop.run_in_executor(executor, self._gather_candidates, term)
        logger.debug(f"{len(candidates)} candidates for {query!r}")

        scored = await asyncio.gather(*[
            loop.run_in_executor(executor, self._score, record, term)
            for record in candidates
        ])
        results = [r for r in scored if r is not None]

        if not results:
            return [_sentinel(NO_RESULTS_PATH, _no_results_text(query, total), ResultType.HELP)]

        # Stable: equal scores keep cascade order
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results

    def _gather_candidates(self, term: str) -> List[FileRecord]:
        """Run the three phases, dedupe by path and cap the working set."""
        records = self.metadata.find_by_path(term, self.EXACT_LIMIT)
        logger.debug(f"Exact matches: {len(records)}")

        if len(records) < 3:
            records += self.metadata.find_by_type(term, self.TYPE_LIMIT)

        if len(records) < 5:
            records += self.metadata.list_ranked(term, self.GENERAL_LIMIT)

        unique: List[FileRecord] = []
        seen = set()
        for record in records:
            if record.path not in seen:
                seen.add(record.path)
                unique.append(record)
        return unique[:self.WORKING_SET]

    def _score(self, record: FileRecord, term: str) -> Optional[SearchResult]:
        """
        Re-read a candidate and build its result (runs in thread pool).

        Returns None when the file no longer exists or cannot be read.
        """
        path = Path(record.path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.debug(f"Indexed file no longer exists: {path}")
            return None
        except OSError as e:
            handle_error(e, path, "search_read")
            return None

        file_name = path.name
        lower_content = content.lower()
        title_hit = term in file_name.lower()

        if title_hit or term in lower_content:
            score = (self.TITLE_SCORE if title_hit else 0) + lower_content.count(term)
            lines = [
                line for line in content.split("\n")
                if term in line.lower() or NOTABLE_LINE.search(line)
            ][:self.PREVIEW_LINES]
            preview = "\n".join(lines) if lines else content[:self.PREVIEW_CHARS] + "..."
        else:
            score = self.FALLBACK_SCORE
            preview = content[:self.FALLBACK_PREVIEW_CHARS] + "..."

        return SearchResult(
            path=record.path,
            text=f"{file_name} ({record.file_type}/{record.language})\n\n{preview}",
            file_size=record.size_bytes,
            indexed_date=record.last_indexed_at.strftime("%Y-%m-%d %H:%M:%S"),
            file_type=record.file_type,
            language=record.language,
            relevance_score=score,
        )

    def _log_history(self, query: str, results: List[SearchResult]) -> None:
        """Append to the search history. Best-effort."""
        if self.metadata is None:
            return
        genuine = [r for r in results if not r.is_sentinel]
        try:
            self.metadata.add_search_history(SearchHistoryEntry(
                query=query,
                results_count=len(genuine),
                search_type="lexical",
            ))
        except StoreError as e:
            handle_error(e, context="search_history")

    def close(self):
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


def _sentinel(path: str, text: str, result_type: ResultType) -> SearchResult:
    return SearchResult(path=path, text=text, result_type=result_type)


def _no_results_text(query: str, total: int) -> str:
    return (
        f'No files found for "{query}".\n\n'
        f"{total} files are indexed. Try:\n"
        '- an exact file name (e.g. "database.ts")\n'
        '- a file type (e.g. "code", "documentation")\n'
        '- a language (e.g. "typescript", "python")\n'
        '- a code fragment (e.g. "function", "class")'
    )
