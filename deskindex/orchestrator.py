"""
Orchestrator - Main entry point for the knowledge base.

Routes each query through QueryRouter:
- help / stats: static summaries
- folder: / file: commands: Indexer, with an outcome summary
- anything else: SearchEngine results with a generative answer on top

The Responder is never needed for the file results to be correct; its
failures become an error-annotated answer entry.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .config import get_config, IndexerConfig
from .embedder import EmbeddingProvider, create_embedder
from .errors import ResponderError, StoreError, StoreInitError, handle_error
from .indexer import Indexer
from .models import (
    Classification, DatabaseStats, Intent, IndexStatus, QueryKind, ResultType, SearchResult,
    ANSWER_PATH, GUIDANCE_PATH, HELP_PATH, INDEX_RESULT_PATH, STATS_PATH,
)
from .pathfilter import PathFilter
from .responder import Responder, create_responder
from .router import QueryRouter
from .search import SearchEngine
from .store import Stores, open_stores
from .watcher import Watcher


logger = logging.getLogger(__name__)


# Checked in this order; the first set with a hit decides the intent
INTENT_KEYWORDS: List[Tuple[Intent, Tuple[str, ...]]] = [
    (Intent.ERROR_HELP, (
        "error", "bug", "exception", "traceback", "crash", "fail", "broken",
        "fix", "debug", "hata", "çalışmıyor",
    )),
    (Intent.CODE_REQUEST, (
        "implement", "add", "write", "create", "feature", "example", "code",
        "ekle", "kod", "yaz", "özellik",
    )),
    (Intent.SUMMARY_REQUEST, (
        "summary", "summarize", "overview", "explain", "architecture", "structure",
        "özet", "mimari", "açıkla",
    )),
]

_INTENT_PATTERNS = [
    (intent, re.compile(r"(?<!\w)(?:" + "|".join(re.escape(k) for k in words) + ")", re.IGNORECASE))
    for intent, words in INTENT_KEYWORDS
]


def classify_intent(query: str) -> Intent:
    """Pick the responder mode for a search query."""
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(query):
            return intent
    return Intent.GENERAL


HELP_TEXT = """deskindex - usage

FOLDERS:
  folder: project_name       Index a folder under your home folders
  folder: /path/to/folder    Index a folder by full path
  file: notes.md             Index a single file

SEARCH:
  database code              Find code files
  typescript interface       Find code structures
  error handler              Find functions

SYSTEM:
  stats                      Database statistics
  help or ?                  Show this message

TIPS:
  English and Turkish commands are accepted
  Matching is case-insensitive"""


def format_stats(stats: DatabaseStats) -> str:
    """Render DatabaseStats for the stats command."""
    types = "\n".join(f"  - {t.capitalize()}" for t in stats.indexed_types) or "  - Nothing indexed yet"
    return (
        "Database statistics\n\n"
        "FILES:\n"
        f"  Total files: {stats.total_files:,}\n"
        f"  Total chunks: {stats.total_chunks:,}\n"
        f"  Total vectors: {stats.total_vectors:,}\n"
        f"  Last updated: {stats.last_updated}\n"
        f"  Database size: {stats.database_size}\n\n"
        f"FILE TYPES:\n{types}\n\n"
        "SYSTEM:\n"
        f"  Metadata store: {'active' if stats.metadata_available else 'unavailable'}\n"
        f"  Vector store: {'active' if stats.vectors_available else 'unavailable'}\n"
        f"  Health: {'ok' if stats.healthy else 'problem detected'}"
    )


class Orchestrator:
    """
    Combines indexing, search and the responder behind answer().

    Collaborators are injected; create() builds the default set from a
    config, opening the stores.
    """

    def __init__(
        self,
        stores: Stores,
        config: Optional[IndexerConfig] = None,
        indexer: Optional[Indexer] = None,
        search_engine: Optional[SearchEngine] = None,
        responder: Optional[Responder] = None,
        router: Optional[QueryRouter] = None,
        embedder: Optional[EmbeddingProvider] = None,
    ):
        self.config = config or get_config()
        self.stores = stores
        self.path_filter = PathFilter(self.config)
        self.router = router or QueryRouter(self.config)
        self.indexer = indexer or Indexer(
            stores, self.config, embedder=embedder, path_filter=self.path_filter
        )
        self.search_engine = search_engine or SearchEngine(stores.metadata, self.config)
        self.responder = responder or create_responder(self.config)
        self._embedder = embedder
        self._watcher: Optional[Watcher] = None

    @classmethod
    def create(cls, config: Optional[IndexerConfig] = None) -> "Orchestrator":
        """
        Open the stores and build the default components.

        Raises:
            StoreInitError: Neither store could be opened
        """
        config = config or get_config()
        stores = open_stores(config)
        return cls(stores, config, embedder=create_embedder(config))

    # --- Queries ---

    async def answer(self, query: str) -> List[SearchResult]:
        """Classify query and produce the response entries."""
        classification = self.router.classify(query)
        kind = classification.kind
        logger.info(f"Query {query!r} routed to {kind.value}")

        if kind == QueryKind.HELP:
            return [SearchResult(path=HELP_PATH, text=HELP_TEXT, result_type=ResultType.HELP)]

        if kind == QueryKind.STATS:
            return [SearchResult(
                path=STATS_PATH,
                text=format_stats(self.get_stats()),
                result_type=ResultType.STATS,
            )]

        if kind in (QueryKind.INDEX_FOLDER, QueryKind.INDEX_FILE):
            return [await self._run_index_command(classification)]

        return await self._hybrid(query)

    async def _run_index_command(self, classification: Classification) -> SearchResult:
        if classification.kind == QueryKind.INDEX_FOLDER:
            text = await self.index_folder(classification.target)
        else:
            text = await self.index_single_file(classification.target)
        return SearchResult(path=INDEX_RESULT_PATH, text=text, result_type=ResultType.INDEX_RESULT)

    async def _hybrid(self, query: str) -> List[SearchResult]:
        results = await self.search_engine.search(query)
        genuine = [r for r in results if not r.is_sentinel]

        if genuine:
            intent = classify_intent(query)
            logger.debug(f"Intent: {intent.value}")
            text, result_type = await self._ask_responder(
                self.responder.respond(intent, query, genuine[:self.config.responder_files])
            )
            answer = SearchResult(path=ANSWER_PATH, text=text, result_type=result_type)
            return [answer] + genuine[:self.config.max_results]

        text, result_type = await self._ask_responder(self.responder.answer_general(query))
        answer = SearchResult(path=ANSWER_PATH, text=text, result_type=result_type)
        guidance = SearchResult(
            path=GUIDANCE_PATH,
            text=_guidance_text(results),
            result_type=ResultType.GUIDANCE,
        )
        return [answer, guidance]

    async def _ask_responder(self, call) -> Tuple[str, ResultType]:
        try:
            return await call, ResultType.ANSWER
        except Exception as e:
            handle_error(ResponderError(str(e)), context="answer")
            return f"Responder error: {e}", ResultType.ERROR

    # --- Stats ---

    def get_stats(self) -> DatabaseStats:
        """Aggregate store statistics. Works with either store missing."""
        metadata = self.stores.metadata
        if metadata is None:
            stats = DatabaseStats()
        else:
            try:
                stats = metadata.stats()
            except StoreError as e:
                handle_error(e, context="stats")
                stats = DatabaseStats(last_updated="Error", metadata_available=True)

        vectors = self.stores.vectors
        stats.vectors_available = vectors.available
        try:
            stats.total_vectors = vectors.count()
        except Exception as e:
            handle_error(StoreError(f"vector count failed: {e}"), context="stats")
        return stats

    # --- Index commands ---

    def folder_candidates(self, target: str) -> List[Path]:
        """Places a relative folder name may refer to, in lookup order."""
        return [root / target for root in self.config.safe_roots] + [Path.home() / target]

    def resolve_target(self, target: str) -> Optional[Path]:
        """
        Absolute targets as given; relative ones against the safe roots, then home.

        The result is the real path, so symlinked folders match safe_roots.
        """
        path = Path(target).expanduser()
        if path.is_absolute():
            return path.resolve() if path.exists() else None
        for candidate in self.folder_candidates(target):
            if candidate.exists():
                return candidate.resolve()
        return None

    async def index_folder(self, target: str) -> str:
        """Run a tree index for a folder command and summarize it."""
        folder = self.resolve_target(target)
        if folder is None:
            searched = "\n".join(f"  - {p}" for p in self.folder_candidates(target))
            return f'Folder not found: "{target}"\n\nSearched:\n{searched}'
        if not folder.is_dir():
            return f"Not a folder: {folder}"

        stats = await self.indexer.index_tree(folder, recursive=True)
        if stats.rejected:
            return f"Indexing refused: {stats.rejected}"

        lines = [f"Folder indexed: {folder}"]
        if self.stores.metadata is not None:
            try:
                count = self.stores.metadata.count_files_under(str(folder))
                lines.append(f"{count} files in the index")
            except StoreError as e:
                handle_error(e, context="index_folder")
        lines.append(f"Duration: {stats.duration_seconds:.2f} seconds")
        lines.append(str(stats))
        return "\n".join(lines)

    async def index_single_file(self, target: str) -> str:
        """Index one file for a file command and summarize it."""
        path = self.resolve_target(target)
        if path is None:
            return f'File not found: "{target}"'
        if not self.path_filter.is_safe_root(path):
            return f"Indexing refused: {path} is outside the allowed folders"

        outcome = await self.indexer.index_file(path)
        if outcome.status == IndexStatus.INDEXED:
            return f"File indexed: {path} ({outcome.chunk_count} chunks)"
        if outcome.status == IndexStatus.UNCHANGED:
            return f"File unchanged since last index: {path}"
        return f"File {outcome.status.value}: {path} - {outcome.reason}"

    # --- Watching ---

    def start_watching(self, root: Path | str) -> bool:
        """Watch root for changes. Replaces any previous watch."""
        if self._watcher is None:
            self._watcher = Watcher(self.indexer, self.config, self.path_filter)
        return self._watcher.start(root)

    def stop_watching(self):
        if self._watcher:
            self._watcher.stop()

    @property
    def watcher(self) -> Optional[Watcher]:
        return self._watcher

    # --- Lifecycle ---

    def close(self):
        """Clean up resources."""
        self.stop_watching()
        self.indexer.close()
        self.search_engine.close()
        if self._embedder is not None:
            self._embedder.close()
        self.stores.close()

    async def aclose(self):
        await self.responder.close()
        self.close()

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


def _guidance_text(sentinels: List[SearchResult]) -> str:
    reasons = "\n\n".join(s.text for s in sentinels)
    return (
        f"{reasons}\n\n"
        'Index a folder with "folder: <name or path>", '
        'or type "help" for all commands.'
    )


def _print_results(results: List[SearchResult]) -> None:
    for result in results:
        if result.is_sentinel:
            print(f"\n{result.text}")
        else:
            print(f"\n[{result.relevance_score}] {result.path}\n{result.text}")


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Local file knowledge base")
    parser.add_argument("query", nargs="*", help="Search query or command")
    parser.add_argument("--index", metavar="PATH", help="Index a folder")
    parser.add_argument("--watch", metavar="PATH", help="Watch a folder for changes")
    parser.add_argument("--stats", action="store_true", help="Show database statistics")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    async def _main() -> int:
        try:
            orchestrator = Orchestrator.create()
        except StoreInitError as e:
            handle_error(e, context="startup")
            return 1

        async with orchestrator:
            if args.index:
                stats = await orchestrator.indexer.index_tree(Path(args.index).expanduser())
                print(f"\n{stats}")

            if args.stats:
                print(f"\n{format_stats(orchestrator.get_stats())}")

            if args.query:
                _print_results(await orchestrator.answer(" ".join(args.query)))

            if args.watch:
                if not orchestrator.start_watching(args.watch):
                    return 1
                print("\nWatching for changes (Ctrl+C to stop)...")
                while True:
                    await asyncio.sleep(1)
        return 0

    try:
        raise SystemExit(asyncio.run(_main()))
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
